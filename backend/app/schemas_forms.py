"""
Pydantic schemas for the form script APIs.

Request bodies keep the camelCase keys the form builder UI sends (formData,
scriptOutput); Python attributes are snake_case.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import ConfigDict, Field
from sqlmodel import SQLModel

from app.core.config import settings
from app.engines.script import ExecutionErrorKind

# ---------------------------------------------------------------------------
# Script
# ---------------------------------------------------------------------------


class ScriptTestIn(SQLModel):
    """Body for POST /forms/test/execute."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(
        default="",
        max_length=settings.SCRIPT_MAX_SOURCE_CHARS,
        description="Script source (Python).",
    )
    form_data: dict[str, Any] = Field(default_factory=dict, alias="formData")


class ScriptUpsert(SQLModel):
    """Body for PUT /forms/{form_id}/script."""

    code: str = Field(..., min_length=1, max_length=settings.SCRIPT_MAX_SOURCE_CHARS)


class ScriptPublic(SQLModel):
    id: uuid.UUID
    form_id: uuid.UUID
    code: str
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmissionPublic(SQLModel):
    id: uuid.UUID
    form_id: uuid.UUID
    form_data: dict[str, Any]
    script_output: Any = None
    ip: str | None = None
    created_at: datetime


class SubmitOut(SQLModel):
    """Response for POST /forms/{form_id}/submit."""

    model_config = ConfigDict(populate_by_name=True)

    submission: SubmissionPublic
    script_output: Any = Field(default=None, alias="scriptOutput")


class ScriptFailure(SQLModel):
    """400 body when a script fails: generic message, reason, failure class."""

    message: str = "Script execution failed"
    error: str
    kind: ExecutionErrorKind
