"""
Health-check helpers for liveness and readiness probes.

Liveness:  is the process alive and able to start sandbox workers?  (cheap)
Readiness: can it serve traffic?  (database reachable)
"""

import logging
import multiprocessing

from sqlmodel import Session, select

from app.core.db import engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Individual dependency checks
# ---------------------------------------------------------------------------

def check_database() -> bool:
    """Check the app DB by running SELECT 1. Returns True if ok."""
    try:
        with Session(engine) as session:
            session.exec(select(1)).first()
        return True
    except Exception:
        logger.warning("Database check failed", exc_info=True)
        return False


def check_sandbox_support() -> bool:
    """Sandbox workers need at least one multiprocessing start method."""
    return bool(multiprocessing.get_all_start_methods())


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------

def liveness_check() -> tuple[bool, list[str]]:
    failures: list[str] = []
    if not check_sandbox_support():
        failures.append("sandbox")
    return not failures, failures


def readiness_check() -> tuple[bool, list[str]]:
    failures: list[str] = []
    if not check_database():
        failures.append("database")
    return not failures, failures
