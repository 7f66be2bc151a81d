"""
Console module for the script sandbox: log, info, warn, error, debug.

Every method is a no-op. Scripts cannot reach host logs or stdout through it;
the recorder only counts attempts so the executor can report them.
"""

from types import SimpleNamespace
from typing import Any


class ConsoleRecorder:
    """Counts console/print calls made by one script run."""

    def __init__(self) -> None:
        self.calls = 0

    def record(self) -> None:
        self.calls += 1


def make_console_module(recorder: ConsoleRecorder) -> Any:
    """Build the `console` object: log, info, warn, error, debug (all silent)."""

    def _swallow(*args: Any, **kwargs: Any) -> None:
        recorder.record()

    return SimpleNamespace(
        log=_swallow,
        info=_swallow,
        warn=_swallow,
        error=_swallow,
        debug=_swallow,
    )


def make_print_collector(recorder: ConsoleRecorder) -> type:
    """
    Build the `_print_` factory RestrictedPython uses for print().

    The rewritten bytecode calls `_print_(_getattr_)` once per function and then
    `_print._call_print(*args)`; `printed` reads back the collected text, which
    is always empty here.
    """

    class SilentPrintCollector:
        def __init__(self, _getattr_: Any = None) -> None:
            self._getattr_ = _getattr_

        def write(self, text: str) -> None:
            pass

        def __call__(self) -> str:
            return ""

        def _call_print(self, *objects: Any, **kwargs: Any) -> None:
            recorder.record()

    return SilentPrintCollector
