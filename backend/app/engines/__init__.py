"""
Engines: Script (RestrictedPython) for form scripts.
"""

from app.engines.script import ScriptExecutor, run_script

__all__ = [
    "ScriptExecutor",
    "run_script",
]
