"""
Entry resolution: turn user source into a module that defines processForm().

A script is either a sequence of statements ending in ``return`` (raw
statements) or a module that defines ``def processForm()`` itself (named
function). The decision is made on the parsed tree, so a string literal that
merely mentions "def processForm" does not count as a definition.
"""

import ast
from dataclasses import dataclass
from enum import Enum

from .errors import ScriptSyntaxError

ENTRY_FUNCTION = "processForm"

_WRAPPER_TEMPLATE = f"def {ENTRY_FUNCTION}():\n    pass\n"

# Parser and compiler give up on pathologically nested expressions with
# MemoryError or RecursionError rather than SyntaxError.
TOO_DEEP_MESSAGE = "SyntaxError: script is too deeply nested"


class ScriptForm(str, Enum):
    RAW_STATEMENTS = "raw_statements"
    NAMED_FUNCTION = "named_function"


@dataclass
class ResolvedScript:
    """Parsed module ready for restricted compilation."""

    form: ScriptForm
    module: ast.Module
    # False when the entry function has no `return <expr>`; a None result is
    # then "no value" rather than JSON null.
    returns_value: bool


def _find_entry(module: ast.Module) -> ast.FunctionDef | None:
    found = None
    for node in module.body:
        if isinstance(node, ast.FunctionDef) and node.name == ENTRY_FUNCTION:
            found = node  # last definition wins, as at runtime
    return found


def _has_value_return(func: ast.FunctionDef) -> bool:
    """True if the function body (not nested defs/lambdas) has `return <expr>`."""
    stack: list[ast.AST] = list(func.body)
    while stack:
        node = stack.pop()
        if isinstance(node, ast.Return) and node.value is not None:
            return True
        if isinstance(
            node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)
        ):
            continue
        stack.extend(ast.iter_child_nodes(node))
    return False


def _parse(source: str, filename: str) -> ast.Module:
    try:
        return ast.parse(source, filename=filename, mode="exec")
    except SyntaxError as e:
        raise ScriptSyntaxError(format_syntax_error(e)) from None
    except ValueError as e:
        # e.g. source containing NUL bytes
        raise ScriptSyntaxError(str(e)) from None
    except (MemoryError, RecursionError):
        raise ScriptSyntaxError(TOO_DEEP_MESSAGE) from None


def format_syntax_error(e: SyntaxError) -> str:
    msg = e.msg or "invalid syntax"
    if e.lineno:
        return f"SyntaxError: {msg} (line {e.lineno})"
    return f"SyntaxError: {msg}"


def resolve_entry(source: str, filename: str = "<script>") -> ResolvedScript:
    """
    Parse source and make sure the resulting module defines processForm.

    Raw statements are moved into the body of a synthesized processForm();
    their original line numbers are kept so error messages point at the
    user's lines. Raises ScriptSyntaxError when the source does not parse.
    """
    if not isinstance(source, str):
        raise ScriptSyntaxError("Script source must be a string")
    module = _parse(source, filename)

    entry = _find_entry(module)
    if entry is not None:
        return ResolvedScript(
            form=ScriptForm.NAMED_FUNCTION,
            module=module,
            returns_value=_has_value_return(entry),
        )

    wrapper_module = ast.parse(_WRAPPER_TEMPLATE, filename=filename, mode="exec")
    wrapper = wrapper_module.body[0]
    assert isinstance(wrapper, ast.FunctionDef)
    if module.body:
        wrapper.body = module.body
        last = module.body[-1]
        wrapper.end_lineno = max(wrapper.end_lineno or 1, last.end_lineno or last.lineno)
    try:
        ast.fix_missing_locations(wrapper_module)
        returns_value = _has_value_return(wrapper)
    except RecursionError:
        raise ScriptSyntaxError(TOO_DEEP_MESSAGE) from None
    return ResolvedScript(
        form=ScriptForm.RAW_STATEMENTS,
        module=wrapper_module,
        returns_value=returns_value,
    )
