from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from app.core.db import engine
from app.engines.script import ScriptExecutor


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_script_executor() -> ScriptExecutor:
    """New executor per request; timeouts and limits come from settings."""
    return ScriptExecutor()


SessionDep = Annotated[Session, Depends(get_db)]
ScriptExecutorDep = Annotated[ScriptExecutor, Depends(get_script_executor)]
