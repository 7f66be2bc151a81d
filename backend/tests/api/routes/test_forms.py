"""Tests for the form script API (test execute, script upsert, submit)."""

import multiprocessing
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.api.deps import get_script_executor
from app.core.config import settings
from app.engines.script import ScriptExecutor
from app.main import app
from app.models import FormSubmission
from tests.utils.form import create_form_script, create_submission

pytestmark = pytest.mark.skipif(
    "fork" not in multiprocessing.get_all_start_methods(),
    reason="fork start method not available (e.g. Windows)",
)


def _base() -> str:
    return f"{settings.API_V1_STR}/forms"


@pytest.fixture(autouse=True)
def _fast_executor() -> Generator[None, None, None]:
    """Fork workers with a short timeout so timeout tests stay quick."""
    app.dependency_overrides[get_script_executor] = lambda: ScriptExecutor(
        timeout_ms=300, start_method="fork"
    )
    yield
    app.dependency_overrides.pop(get_script_executor, None)


# --- test execute ---


def test_execute_returns_raw_result(client: TestClient) -> None:
    r = client.post(
        f"{_base()}/test/execute",
        json={"code": "return {'sum': a + b}", "formData": {"a": 2, "b": 3}},
    )
    assert r.status_code == 200
    assert r.json() == {"sum": 5}


def test_execute_without_form_data(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"code": "return [1, 2]"})
    assert r.status_code == 200
    assert r.json() == [1, 2]


def test_execute_null_result(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"code": "return None"})
    assert r.status_code == 200
    assert r.json() is None


def test_execute_no_code(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"formData": {"a": 1}})
    assert r.status_code == 400
    assert r.json() == {"message": "No code provided"}


def test_execute_syntax_error(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"code": "return (", "formData": {}})
    assert r.status_code == 400
    data = r.json()
    assert data["message"] == "Script execution failed"
    assert data["kind"] == "syntax"
    assert "SyntaxError" in data["error"]


def test_execute_runtime_error(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"code": "return nope"})
    assert r.status_code == 400
    assert r.json()["kind"] == "runtime"


def test_execute_violation(client: TestClient) -> None:
    r = client.post(
        f"{_base()}/test/execute", json={"code": "import subprocess\nreturn 1"}
    )
    assert r.status_code == 400
    data = r.json()
    assert data["kind"] == "violation"
    assert "subprocess" in data["error"]


def test_execute_timeout(client: TestClient) -> None:
    r = client.post(f"{_base()}/test/execute", json={"code": "while True:\n    pass"})
    assert r.status_code == 400
    data = r.json()
    assert data["kind"] == "timeout"
    assert "300 ms" in data["error"]


def test_execute_deeply_nested_code_is_syntax(client: TestClient) -> None:
    r = client.post(
        f"{_base()}/test/execute", json={"code": "return " + "-" * 50_000 + "1"}
    )
    assert r.status_code == 400
    assert r.json()["kind"] == "syntax"


def test_execute_code_too_long(client: TestClient) -> None:
    code = "x = 1\n" * 20_000 + "return x"
    r = client.post(f"{_base()}/test/execute", json={"code": code})
    assert r.status_code == 422


def test_execute_rejects_non_object_form_data(client: TestClient) -> None:
    r = client.post(
        f"{_base()}/test/execute", json={"code": "return 1", "formData": [1, 2]}
    )
    assert r.status_code == 422
    assert isinstance(r.json()["detail"], str)


# --- script upsert / get / delete ---


def test_upsert_script_creates_then_updates(client: TestClient) -> None:
    form_id = uuid.uuid4()
    r = client.put(f"{_base()}/{form_id}/script", json={"code": "return 1"})
    assert r.status_code == 201
    created = r.json()
    assert created["form_id"] == str(form_id)
    assert created["code"] == "return 1"

    r = client.put(f"{_base()}/{form_id}/script", json={"code": "return 2"})
    assert r.status_code == 200
    updated = r.json()
    assert updated["id"] == created["id"]
    assert updated["code"] == "return 2"


def test_upsert_script_empty_code(client: TestClient) -> None:
    r = client.put(f"{_base()}/{uuid.uuid4()}/script", json={"code": ""})
    assert r.status_code == 422


def test_get_script(client: TestClient, db: Session) -> None:
    script = create_form_script(db, code="return 'hi'")
    r = client.get(f"{_base()}/{script.form_id}/script")
    assert r.status_code == 200
    assert r.json()["code"] == "return 'hi'"


def test_get_script_not_found(client: TestClient) -> None:
    r = client.get(f"{_base()}/{uuid.uuid4()}/script")
    assert r.status_code == 404
    assert r.json()["detail"] == "Script not found for this form"


def test_delete_script(client: TestClient, db: Session) -> None:
    script = create_form_script(db)
    r = client.delete(f"{_base()}/{script.form_id}/script")
    assert r.status_code == 200
    assert r.json()["message"] == "Script deleted successfully"
    r = client.get(f"{_base()}/{script.form_id}/script")
    assert r.status_code == 404


def test_get_script_invalid_form_id(client: TestClient) -> None:
    r = client.get(f"{_base()}/not-a-uuid/script")
    assert r.status_code == 422


# --- submit ---


def test_submit_runs_script_and_stores_submission(
    client: TestClient, db: Session
) -> None:
    script = create_form_script(
        db, code="return {'full': first + ' ' + last}"
    )
    r = client.post(
        f"{_base()}/{script.form_id}/submit", json={"first": "Ada", "last": "Lovelace"}
    )
    assert r.status_code == 201
    data = r.json()
    assert data["scriptOutput"] == {"full": "Ada Lovelace"}
    assert data["submission"]["form_id"] == str(script.form_id)
    assert data["submission"]["form_data"] == {"first": "Ada", "last": "Lovelace"}
    assert data["submission"]["script_output"] == {"full": "Ada Lovelace"}

    stored = db.exec(
        select(FormSubmission).where(FormSubmission.form_id == script.form_id)
    ).all()
    assert len(stored) == 1


def test_submit_without_script(client: TestClient) -> None:
    r = client.post(f"{_base()}/{uuid.uuid4()}/submit", json={"a": 1})
    assert r.status_code == 404


def test_submit_failing_script_stores_nothing(client: TestClient, db: Session) -> None:
    script = create_form_script(db, code="raise ValueError('rejected')")
    r = client.post(f"{_base()}/{script.form_id}/submit", json={"a": 1})
    assert r.status_code == 400
    data = r.json()
    assert data["message"] == "Script execution failed"
    assert data["kind"] == "runtime"
    assert "rejected" in data["error"]

    stored = db.exec(
        select(FormSubmission).where(FormSubmission.form_id == script.form_id)
    ).all()
    assert stored == []


def test_submit_empty_body(client: TestClient, db: Session) -> None:
    script = create_form_script(db, code="return len(formData)")
    r = client.post(f"{_base()}/{script.form_id}/submit")
    assert r.status_code == 201
    assert r.json()["scriptOutput"] == 0


# --- submissions list ---


def test_list_submissions(client: TestClient, db: Session) -> None:
    form_id = uuid.uuid4()
    create_submission(db, form_id=form_id, form_data={"n": 1}, script_output=1)
    create_submission(db, form_id=form_id, form_data={"n": 2}, script_output=2)
    create_submission(db, form_id=uuid.uuid4(), form_data={"n": 3})
    r = client.get(f"{_base()}/{form_id}/submissions")
    assert r.status_code == 200
    data = r.json()
    assert len(data) == 2
    assert {s["script_output"] for s in data} == {1, 2}


def test_list_submissions_empty(client: TestClient) -> None:
    r = client.get(f"{_base()}/{uuid.uuid4()}/submissions")
    assert r.status_code == 200
    assert r.json() == []
