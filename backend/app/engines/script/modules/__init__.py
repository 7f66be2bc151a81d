"""
Script sandbox modules: console (silent logging surface).
"""

from app.engines.script.modules.console import (
    ConsoleRecorder,
    make_console_module,
    make_print_collector,
)

__all__ = [
    "ConsoleRecorder",
    "make_console_module",
    "make_print_collector",
]
