"""
Classified script execution failures: syntax, runtime, timeout, violation.
"""

from enum import Enum


class ExecutionErrorKind(str, Enum):
    """Failure classes reported to callers of ScriptExecutor.execute."""

    SYNTAX = "syntax"
    RUNTIME = "runtime"
    TIMEOUT = "timeout"
    VIOLATION = "violation"


class ScriptExecutionError(Exception):
    """Base class for every failure raised by the script engine."""

    kind: ExecutionErrorKind = ExecutionErrorKind.RUNTIME

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def user_message(self) -> str:
        return f"Script execution failed: {self.message}"


class ScriptSyntaxError(ScriptExecutionError):
    """Script source does not parse or compile."""

    kind = ExecutionErrorKind.SYNTAX


class ScriptRuntimeError(ScriptExecutionError):
    """Script raised, returned an unusable value, or its worker died."""

    kind = ExecutionErrorKind.RUNTIME


class ScriptTimeoutError(ScriptExecutionError, TimeoutError):
    """Raised when script execution exceeds SCRIPT_EXEC_TIMEOUT_MS."""

    kind = ExecutionErrorKind.TIMEOUT


class ScriptViolationError(ScriptExecutionError):
    """Script tried to use a capability the sandbox does not provide."""

    kind = ExecutionErrorKind.VIOLATION


_ERRORS_BY_KIND: dict[ExecutionErrorKind, type[ScriptExecutionError]] = {
    ExecutionErrorKind.SYNTAX: ScriptSyntaxError,
    ExecutionErrorKind.RUNTIME: ScriptRuntimeError,
    ExecutionErrorKind.TIMEOUT: ScriptTimeoutError,
    ExecutionErrorKind.VIOLATION: ScriptViolationError,
}


def error_for_kind(kind: str, message: str) -> ScriptExecutionError:
    """Rebuild a classified error from its wire form (kind, message)."""
    try:
        cls = _ERRORS_BY_KIND[ExecutionErrorKind(kind)]
    except ValueError:
        cls = ScriptRuntimeError
    return cls(message)
