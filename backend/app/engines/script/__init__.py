"""
Script engine (Python, RestrictedPython) for form scripts.

Exports: ScriptExecutor, run_script, resolve_entry, compile_script,
build_restricted_globals and the classified errors.
"""

from .entry import ENTRY_FUNCTION, ResolvedScript, ScriptForm, resolve_entry
from .errors import (
    ExecutionErrorKind,
    ScriptExecutionError,
    ScriptRuntimeError,
    ScriptSyntaxError,
    ScriptTimeoutError,
    ScriptViolationError,
)
from .executor import ScriptExecutor, run_script
from .sandbox import build_restricted_globals, compile_script

__all__ = [
    "ENTRY_FUNCTION",
    "ExecutionErrorKind",
    "ResolvedScript",
    "ScriptExecutionError",
    "ScriptExecutor",
    "ScriptForm",
    "ScriptRuntimeError",
    "ScriptSyntaxError",
    "ScriptTimeoutError",
    "ScriptViolationError",
    "build_restricted_globals",
    "compile_script",
    "resolve_entry",
    "run_script",
]
