"""
Form script endpoints.

Endpoints: test execute (no persistence), script upsert/get/delete,
submit (run the form's script and store the submission), list submissions.
"""

import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlmodel import Session, col, select

from app.api.deps import ScriptExecutorDep, SessionDep
from app.models import FormScript, FormSubmission, Message, utc_now
from app.schemas_forms import (
    ScriptPublic,
    ScriptTestIn,
    ScriptUpsert,
    SubmissionPublic,
    SubmitOut,
)

router = APIRouter(prefix="/forms", tags=["forms"])

_log = logging.getLogger(__name__)


def _get_script(session: Session, form_id: uuid.UUID) -> FormScript | None:
    stmt = select(FormScript).where(FormScript.form_id == form_id)
    return session.exec(stmt).first()


def _to_public_submission(s: FormSubmission) -> SubmissionPublic:
    return SubmissionPublic(
        id=s.id,
        form_id=s.form_id,
        form_data=s.form_data or {},
        script_output=s.script_output,
        ip=s.ip,
        created_at=s.created_at,
    )


@router.post("/test/execute", response_model=None)
def execute_test_script(body: ScriptTestIn, executor: ScriptExecutorDep) -> Any:
    """
    Run code against formData without saving anything.

    Returns the script's raw JSON result, or 400 with the failure envelope.
    """
    if not body.code:
        return JSONResponse(status_code=400, content={"message": "No code provided"})
    result = executor.execute(body.code, body.form_data)
    return JSONResponse(content=result)


@router.put("/{form_id}/script", response_model=ScriptPublic)
def upsert_script(
    form_id: uuid.UUID,
    body: ScriptUpsert,
    session: SessionDep,
    response: Response,
) -> Any:
    """Create (201) or replace (200) the script attached to a form."""
    script = _get_script(session, form_id)
    created = script is None
    if script is None:
        script = FormScript(form_id=form_id, code=body.code)
    else:
        script.code = body.code
        script.updated_at = utc_now()
    session.add(script)
    session.commit()
    session.refresh(script)
    _log.info(
        "script_creation" if created else "script_update",
        extra={"form_id": str(form_id), "script_id": str(script.id)},
    )
    response.status_code = 201 if created else 200
    return script


@router.get("/{form_id}/script", response_model=ScriptPublic)
def get_script(form_id: uuid.UUID, session: SessionDep) -> Any:
    script = _get_script(session, form_id)
    if script is None:
        raise HTTPException(status_code=404, detail="Script not found for this form")
    return script


@router.delete("/{form_id}/script", response_model=Message)
def delete_script(form_id: uuid.UUID, session: SessionDep) -> Message:
    script = _get_script(session, form_id)
    if script is None:
        raise HTTPException(status_code=404, detail="Script not found for this form")
    session.delete(script)
    session.commit()
    _log.info("script_deletion", extra={"form_id": str(form_id)})
    return Message(message="Script deleted successfully")


@router.post("/{form_id}/submit", response_model=SubmitOut, status_code=201)
def submit_form(
    form_id: uuid.UUID,
    session: SessionDep,
    executor: ScriptExecutorDep,
    request: Request,
    form_data: Annotated[dict[str, Any] | None, Body()] = None,
) -> Any:
    """
    Run the form's script with the submitted fields as bindings and store the
    submission with the script output. A failed script stores nothing.
    """
    script = _get_script(session, form_id)
    if script is None:
        raise HTTPException(status_code=404, detail="Script not found for this form")

    data = form_data or {}
    # ScriptExecutionError propagates to the app handler; nothing is stored
    output = executor.execute(script.code, data)

    submission = FormSubmission(
        form_id=form_id,
        form_data=data,
        script_output=output,
        ip=request.client.host if request.client else None,
    )
    session.add(submission)
    session.commit()
    session.refresh(submission)
    _log.info(
        "form_submission",
        extra={"form_id": str(form_id), "submission_id": str(submission.id)},
    )
    return SubmitOut(
        submission=_to_public_submission(submission),
        script_output=output,
    )


@router.get("/{form_id}/submissions", response_model=list[SubmissionPublic])
def list_submissions(form_id: uuid.UUID, session: SessionDep) -> Any:
    """Submissions for a form, newest first."""
    stmt = (
        select(FormSubmission)
        .where(FormSubmission.form_id == form_id)
        .order_by(col(FormSubmission.created_at).desc())
    )
    rows = session.exec(stmt).all()
    return [_to_public_submission(r) for r in rows]
