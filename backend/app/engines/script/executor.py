"""
ScriptExecutor: execute(source, bindings) -> result.

Resolves the processForm entry, compiles with RestrictedPython, then runs
processForm() in a brand-new worker process. The worker reports "ready" once
started; the parent then waits for whatever remains of SCRIPT_EXEC_TIMEOUT_MS
after its own compile. A worker that overruns is terminated, then killed.
Nothing is reused between calls: every execution gets a new process and a new
globals dict.
"""

import json
import logging
import math
import multiprocessing
import os
import time
from collections.abc import Mapping
from multiprocessing.connection import Connection
from typing import Any

from app.core.config import settings

from .entry import ENTRY_FUNCTION, resolve_entry
from .errors import (
    ExecutionErrorKind,
    ScriptExecutionError,
    ScriptRuntimeError,
    ScriptTimeoutError,
    ScriptViolationError,
    error_for_kind,
)
from .modules import ConsoleRecorder
from .sandbox import build_restricted_globals, compile_script

try:
    import resource
except ImportError:  # Windows
    resource = None  # type: ignore[assignment]

_log = logging.getLogger(__name__)

# Time allowed between SIGTERM and SIGKILL for an overrunning worker
_KILL_GRACE_SEC = 0.1

_MSG_READY = "ready"
_MSG_OK = "ok"
_MSG_ERROR = "error"


def run_script(
    source: str,
    bindings: Mapping[str, Any],
    recorder: ConsoleRecorder | None = None,
) -> Any:
    """
    Run source in restricted globals in the current process and return
    processForm()'s value. No timeout; ScriptExecutor calls this inside the
    worker.
    """
    resolved = resolve_entry(source)
    code = compile_script(resolved)
    g = build_restricted_globals(bindings, recorder)
    try:
        exec(code, g)  # noqa: S102 - restricted environment
        entry = g.get(ENTRY_FUNCTION)
        if not callable(entry):
            raise ScriptRuntimeError(f"{ENTRY_FUNCTION} is not callable")
        result = entry()
    except ScriptExecutionError:
        raise
    except Exception as e:
        raise ScriptRuntimeError(f"{type(e).__name__}: {e}") from None
    if result is None and not resolved.returns_value:
        raise ScriptRuntimeError(f"{ENTRY_FUNCTION}() returned no value")
    return result


def _check_keys(result: Any) -> None:
    """json.dumps would turn {1: 'a'} into {"1": "a"}; refuse instead."""
    stack = [result]
    while stack:
        value = stack.pop()
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise ScriptRuntimeError(
                        f"{ENTRY_FUNCTION}() returned an object with non-string key {key!r}"
                    )
                stack.append(item)
        elif isinstance(value, (list, tuple)):
            stack.extend(value)


def _encode_result(result: Any) -> str:
    try:
        encoded = json.dumps(result, allow_nan=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise ScriptRuntimeError(
            f"{ENTRY_FUNCTION}() returned a value that is not JSON-serializable: {e}"
        ) from None
    # dumps succeeded, so the value is acyclic
    _check_keys(result)
    return encoded


def _address_space_bytes() -> int:
    """Current virtual memory size of this process; 0 where /proc is missing."""
    try:
        with open("/proc/self/statm") as f:
            pages = int(f.read().split()[0])
    except (OSError, ValueError, IndexError):
        return 0
    return pages * os.sysconf("SC_PAGE_SIZE")


def _apply_limits(memory_limit_mb: int, cpu_limit_sec: int) -> None:
    """
    Hard per-worker caps; termination by the parent stays the primary timeout.

    The memory cap is headroom above what the worker already maps, since a
    forked worker inherits the server's whole address space.
    """
    if resource is None:
        return
    limits = [(resource.RLIMIT_CPU, cpu_limit_sec)]
    if memory_limit_mb > 0:
        limits.append(
            (resource.RLIMIT_AS, _address_space_bytes() + memory_limit_mb * 1024 * 1024)
        )
    for which, value in limits:
        soft, hard = resource.getrlimit(which)
        if hard != resource.RLIM_INFINITY:
            value = min(value, hard)
        resource.setrlimit(which, (value, hard))


def _worker_main(
    conn: Connection,
    source: str,
    bindings_json: str,
    memory_limit_mb: int,
    cpu_limit_sec: int,
) -> None:
    """Worker process entry point. Sends ready, then exactly one outcome."""
    recorder = ConsoleRecorder()
    try:
        _apply_limits(memory_limit_mb, cpu_limit_sec)
        conn.send((_MSG_READY,))
        result = run_script(source, json.loads(bindings_json), recorder)
        outcome: tuple[Any, ...] = (_MSG_OK, _encode_result(result), recorder.calls)
    except ScriptExecutionError as e:
        outcome = (_MSG_ERROR, e.kind.value, e.message, recorder.calls)
    except BaseException as e:  # worker must always report
        outcome = (
            _MSG_ERROR,
            ExecutionErrorKind.RUNTIME.value,
            f"{type(e).__name__}: {e}",
            recorder.calls,
        )
    try:
        conn.send(outcome)
    finally:
        conn.close()


def _check_source_size(source: Any) -> None:
    limit = settings.SCRIPT_MAX_SOURCE_CHARS
    if isinstance(source, str) and len(source) > limit:
        raise ScriptViolationError(
            f"Script is {len(source)} characters long; the limit is {limit}"
        )


def encode_bindings(bindings: Mapping[str, Any] | None) -> str:
    """
    Validate form data and return it as JSON text.

    The worker only ever sees this copy, so the caller's mapping is never
    mutated or retained.
    """
    if bindings is None:
        bindings = {}
    if not isinstance(bindings, Mapping):
        raise ScriptRuntimeError("Form data must be an object of field names to values")
    for key in bindings:
        if not isinstance(key, str):
            raise ScriptRuntimeError(f"Form field names must be strings, got {key!r}")
    try:
        return json.dumps(dict(bindings), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ScriptRuntimeError(f"Form data is not JSON-serializable: {e}") from None
    except RecursionError:
        raise ScriptRuntimeError("Form data is too deeply nested") from None


def _default_start_method() -> str:
    methods = multiprocessing.get_all_start_methods()
    return "fork" if "fork" in methods else "spawn"


class ScriptExecutor:
    """
    Run a form script in a RestrictedPython sandbox inside a fresh worker process.

    Options left as None are read from settings on every call.
    """

    def __init__(
        self,
        *,
        timeout_ms: int | None = None,
        memory_limit_mb: int | None = None,
        start_method: str | None = None,
        warn_on_console: bool | None = None,
    ) -> None:
        self._timeout_ms = timeout_ms
        self._memory_limit_mb = memory_limit_mb
        self._start_method = start_method
        self._warn_on_console = warn_on_console

    @property
    def timeout_ms(self) -> int:
        if self._timeout_ms is not None:
            return self._timeout_ms
        return settings.SCRIPT_EXEC_TIMEOUT_MS

    def execute(self, source: str, bindings: Mapping[str, Any] | None = None) -> Any:
        """
        Return processForm()'s JSON value for source run against bindings.

        Syntax and policy problems are reported before any worker starts.
        Raises ScriptSyntaxError, ScriptRuntimeError, ScriptTimeoutError or
        ScriptViolationError; never anything else for script-caused failures.
        """
        started = time.monotonic()
        try:
            _check_source_size(source)
            bindings_json = encode_bindings(bindings)
            compile_script(resolve_entry(source))
            # parent-side compile counts against the script's budget
            remaining = self.timeout_ms / 1000 - (time.monotonic() - started)
            if remaining <= 0:
                raise self._timeout_error()
            outcome = self._run_in_worker(source, bindings_json, remaining)
        except ScriptExecutionError as e:
            self._log_failure(e)
            raise

        status = outcome[0]
        if outcome[-1] and self._console_warnings_enabled():
            _log.warning(
                "Script attempted %d console/print call(s); output discarded",
                outcome[-1],
            )
        if status == _MSG_OK:
            return json.loads(outcome[1])
        err = error_for_kind(outcome[1], outcome[2])
        self._log_failure(err)
        raise err

    def _console_warnings_enabled(self) -> bool:
        if self._warn_on_console is not None:
            return self._warn_on_console
        return settings.SCRIPT_WARN_ON_CONSOLE

    def _new_worker(
        self, source: str, bindings_json: str
    ) -> tuple[multiprocessing.process.BaseProcess, Connection]:
        """Factory: one process and one pipe per execution, never pooled."""
        method = (
            self._start_method
            or settings.SCRIPT_START_METHOD
            or _default_start_method()
        )
        ctx = multiprocessing.get_context(method)
        memory_limit = (
            self._memory_limit_mb
            if self._memory_limit_mb is not None
            else settings.SCRIPT_MEMORY_LIMIT_MB
        )
        cpu_limit = math.ceil(self.timeout_ms / 1000) + 1
        try:
            parent_conn, child_conn = ctx.Pipe(duplex=False)
        except OSError as e:
            raise ScriptRuntimeError(f"Could not start sandbox worker: {e}") from None
        proc = ctx.Process(
            target=_worker_main,
            args=(child_conn, source, bindings_json, memory_limit, cpu_limit),
            name="script-sandbox",
            daemon=True,
        )
        try:
            proc.start()
        except OSError as e:
            # EAGAIN / EMFILE: too many processes or open files
            parent_conn.close()
            raise ScriptRuntimeError(f"Could not start sandbox worker: {e}") from None
        finally:
            child_conn.close()
        return proc, parent_conn

    def _timeout_error(self) -> ScriptTimeoutError:
        return ScriptTimeoutError(f"Script execution timed out after {self.timeout_ms} ms")

    def _run_in_worker(
        self, source: str, bindings_json: str, budget_sec: float
    ) -> tuple[Any, ...]:
        proc, conn = self._new_worker(source, bindings_json)
        try:
            if not conn.poll(settings.SCRIPT_WORKER_START_TIMEOUT_SEC):
                raise ScriptRuntimeError("Sandbox worker did not start")
            first = self._recv(conn, proc)
            if first[0] != _MSG_READY:
                # failed before reaching the script (e.g. resource limits)
                return first
            if not conn.poll(budget_sec):
                raise self._timeout_error()
            return self._recv(conn, proc)
        finally:
            conn.close()
            self._reap(proc)

    @staticmethod
    def _recv(conn: Connection, proc: multiprocessing.process.BaseProcess) -> tuple[Any, ...]:
        try:
            return conn.recv()
        except (EOFError, OSError):
            proc.join(_KILL_GRACE_SEC)
            raise ScriptRuntimeError(
                f"Sandbox worker exited unexpectedly (exit code {proc.exitcode})"
            ) from None

    @staticmethod
    def _reap(proc: multiprocessing.process.BaseProcess) -> None:
        """Stop the worker if it is still running, then join it."""
        if proc.is_alive():
            proc.terminate()
            proc.join(_KILL_GRACE_SEC)
        if proc.is_alive():
            _log.warning("Sandbox worker pid=%s ignored SIGTERM; killing", proc.pid)
            proc.kill()
        proc.join()
        proc.close()

    @staticmethod
    def _log_failure(err: ScriptExecutionError) -> None:
        if err.kind == ExecutionErrorKind.TIMEOUT:
            _log.warning("Script execution timed out: %s", err.message)
        else:
            _log.info("Script execution failed (%s): %s", err.kind.value, err.message)
