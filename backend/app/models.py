"""
Form script models: FormScript (one script per form) and FormSubmission.

Forms themselves live in the form builder service; here a form is only its id.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Timezone-aware UTC now (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


class Message(SQLModel):
    message: str


# ---------------------------------------------------------------------------
# FormScript - user script run against each submission
# ---------------------------------------------------------------------------


class FormScript(SQLModel, table=True):
    __tablename__ = "form_script"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    form_id: uuid.UUID = Field(index=True, unique=True)
    code: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# FormSubmission - submitted data plus the script's output
# ---------------------------------------------------------------------------


class FormSubmission(SQLModel, table=True):
    __tablename__ = "form_submission"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    form_id: uuid.UUID = Field(index=True)
    form_data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    script_output: Any = Field(default=None, sa_column=Column(JSON))
    ip: str | None = Field(default=None, max_length=64)
    created_at: datetime = Field(default_factory=utc_now, index=True)
