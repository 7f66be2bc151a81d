"""
RestrictedPython sandbox for form scripts.

Allowed: dict, list, set, tuple, str, int, float, bool, range, enumerate, zip,
sorted, reversed, len, round, min, max, sum, any, all, abs, isinstance,
json.loads/dumps, math, datetime/date/time/timedelta, console (silent) and
the form bindings.

Blocked: __import__, open, eval, exec, compile, globals, locals, vars, getattr,
input, breakpoint; attribute and variable names starting with "_".
"""

import builtins
import json
import keyword
import math
import operator
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from types import SimpleNamespace
from typing import Any

from RestrictedPython import compile_restricted_exec
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safe_builtins,
    safer_getattr,
)

from .entry import TOO_DEEP_MESSAGE, ResolvedScript, format_syntax_error
from .errors import ScriptSyntaxError, ScriptViolationError
from .modules import ConsoleRecorder, make_console_module, make_print_collector

_EXTRA_BUILTINS = (
    "dict",
    "list",
    "set",
    "frozenset",
    "enumerate",
    "reversed",
    "min",
    "max",
    "sum",
    "any",
    "all",
    "map",
    "filter",
)

BLOCKED_BUILTINS = (
    "__import__",
    "open",
    "eval",
    "exec",
    "compile",
    "globals",
    "locals",
    "vars",
    "getattr",
    "input",
    "breakpoint",
    "help",
    "memoryview",
)

_INPLACE_OPS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "|=": operator.ior,
    "^=": operator.ixor,
    "@=": operator.imatmul,
}


def _blocked(name: str) -> Any:
    def _raise(*args: Any, **kwargs: Any) -> None:
        if name == "__import__" and args:
            raise ScriptViolationError(f"import of '{args[0]}' is not allowed")
        raise ScriptViolationError(f"'{name}' is not available in the sandbox")

    _raise.__name__ = name
    return _raise


def _make_safe_builtins() -> dict[str, Any]:
    """safe_builtins plus common container helpers; dangerous names raise a violation."""
    safe = dict(safe_builtins)
    for name in _EXTRA_BUILTINS:
        safe[name] = getattr(builtins, name)
    for name in BLOCKED_BUILTINS:
        safe[name] = _blocked(name)
    return safe


def _guarded_getattr(obj: Any, name: str, default: Any = None) -> Any:
    try:
        return safer_getattr(obj, name, default)
    except NotImplementedError as e:
        # str.format and friends
        raise ScriptViolationError(str(e)) from None


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise ScriptViolationError(f"operator {op} is not allowed")
    return fn(x, y)


def _apply(func: Any, *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def _make_guard_globals(recorder: ConsoleRecorder) -> dict[str, Any]:
    """Guards required by RestrictedPython's rewritten bytecode."""
    return {
        "_getattr_": _guarded_getattr,
        "_getiter_": default_guarded_getiter,
        "_getitem_": default_guarded_getitem,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "_print_": make_print_collector(recorder),
        "__metaclass__": type,
    }


def _make_extra_globals() -> dict[str, Any]:
    """Extra safe symbols: json (loads/dumps only), math, datetime, date, time, timedelta."""
    return {
        "json": SimpleNamespace(loads=json.loads, dumps=json.dumps),
        "math": math,
        "datetime": datetime,
        "date": date,
        "time": time,
        "timedelta": timedelta,
    }


def is_bindable_name(name: Any) -> bool:
    """Form field names that can become script variables.

    Underscore names are excluded so a field can never replace a guard hook.
    """
    return (
        isinstance(name, str)
        and name.isidentifier()
        and not keyword.iskeyword(name)
        and not name.startswith("_")
    )


def compile_script(resolved: ResolvedScript, filename: str = "<script>") -> Any:
    """
    Compile a resolved script with RestrictedPython.

    Raises ScriptViolationError when the restriction policy rejects the code
    and ScriptSyntaxError when the final compile step fails.
    Returns a code object suitable for exec(bytecode, globals).
    """
    try:
        # Compiler-stage errors ('return' outside function next to a
        # processForm definition, duplicate arguments, ...) are syntax errors.
        compile(resolved.module, filename, "exec", dont_inherit=True)
        result = compile_restricted_exec(resolved.module, filename)
    except SyntaxError as e:
        raise ScriptSyntaxError(format_syntax_error(e)) from None
    except (MemoryError, RecursionError):
        raise ScriptSyntaxError(TOO_DEEP_MESSAGE) from None
    if result.errors:
        raise ScriptViolationError("; ".join(result.errors))
    if result.code is None:
        raise ScriptSyntaxError("RestrictedPython: compile failed")
    return result.code


def build_restricted_globals(
    bindings: Mapping[str, Any],
    recorder: ConsoleRecorder | None = None,
) -> dict[str, Any]:
    """
    Build a fresh globals dict for exec(compiled, globals): safe builtins,
    guards, extras (json, math, datetime), console, formData and bindings.

    Bindings are applied last, so a field called `console` or `json` shadows
    the helper of the same name for this run.
    """
    recorder = recorder or ConsoleRecorder()
    g: dict[str, Any] = {
        "__builtins__": _make_safe_builtins(),
        "__name__": "script",
    }
    g.update(_make_guard_globals(recorder))
    g.update(_make_extra_globals())
    g["console"] = make_console_module(recorder)
    g["formData"] = dict(bindings)
    for name, value in bindings.items():
        if is_bindable_name(name):
            g[name] = value
    return g
