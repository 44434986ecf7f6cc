import pydantic
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError
from starlette.exceptions import HTTPException

from tasktracker_app.error_handlers import classify, constraint_kind, register_exception_handlers
from tasktracker_app.errors import (
    AppError,
    ConflictError,
    DatabaseError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from tasktracker_app.schemas import TaskCreate

from conftest import make_settings


def _integrity(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


@pytest.mark.parametrize(
    "message, kind",
    [
        ("UNIQUE constraint failed: users.email", "unique"),
        ('duplicate key value violates unique constraint "users_email_key"', "unique"),
        ("FOREIGN KEY constraint failed", "foreign_key"),
        ("NOT NULL constraint failed: tasks.title", "not_null"),
        ("CHECK constraint failed: ck_priority", "check"),
        ("something odd", "other"),
    ],
)
def test_constraint_kind(message, kind):
    assert constraint_kind(_integrity(message)) == kind


def test_classify_database_errors():
    dup = classify(_integrity("UNIQUE constraint failed: users.email"))
    assert isinstance(dup, ConflictError)
    assert dup.code == "DUPLICATE_RECORD"

    fk = classify(_integrity("FOREIGN KEY constraint failed"))
    assert isinstance(fk, ValidationError)
    assert fk.code == "FOREIGN_KEY_CONSTRAINT"

    missing = classify(NoResultFound())
    assert isinstance(missing, NotFoundError)
    assert missing.code == "RECORD_NOT_FOUND"

    down = classify(OperationalError("SELECT 1", {}, Exception("connection refused")))
    assert isinstance(down, DatabaseError)
    assert down.status_code == 500


def test_classify_passes_app_errors_through():
    err = ConflictError("taken")
    assert classify(err) is err


def test_classify_pydantic_errors_carry_field_list():
    with pytest.raises(pydantic.ValidationError) as exc:
        TaskCreate.model_validate({"title": "", "priority": "NOPE"})
    err = classify(exc.value)
    assert isinstance(err, ValidationError)
    fields = {d["field"] for d in err.details}
    assert fields == {"title", "priority"}


def test_classify_http_and_unknown():
    err = classify(HTTPException(status_code=404))
    assert err.status_code == 404
    assert err.code == "ROUTE_NOT_FOUND"

    err = classify(HTTPException(status_code=418, detail="teapot"))
    assert err.status_code == 418
    assert err.message == "teapot"

    err = classify(RuntimeError("boom"))
    assert isinstance(err, InternalError)
    assert err.status_code == 500
    assert err.code == "INTERNAL_SERVER_ERROR"


def _app_for(env: str) -> FastAPI:
    app = FastAPI()
    app.state.settings = make_settings(APP_ENV=env, SECRET_KEY="not-the-default")
    register_exception_handlers(app)

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    @app.get("/teapot")
    def teapot():
        raise AppError("short and stout", code="TEAPOT", status_code=418, details={"spout": True})

    return app


def test_unexpected_error_in_development_shows_detail():
    with TestClient(_app_for("development"), raise_server_exceptions=False) as c:
        r = c.get("/boom")
    assert r.status_code == 500
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "secret internals"
    assert body["code"] == "INTERNAL_SERVER_ERROR"
    assert "RuntimeError" in body["stack"]


def test_unexpected_error_in_production_is_generic():
    with TestClient(_app_for("production"), raise_server_exceptions=False) as c:
        r = c.get("/boom")
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Internal server error"
    assert "stack" not in body
    assert "secret internals" not in r.text


def test_app_error_fields_reach_the_envelope():
    with TestClient(_app_for("production")) as c:
        r = c.get("/teapot")
    assert r.status_code == 418
    body = r.json()
    assert body == {
        "success": False,
        "error": "short and stout",
        "code": "TEAPOT",
        "details": {"spout": True},
        "path": "/teapot",
        "method": "GET",
        "timestamp": body["timestamp"],
    }


def test_method_not_allowed():
    with TestClient(_app_for("production")) as c:
        r = c.post("/teapot")
    assert r.status_code == 405
    assert r.json()["code"] == "METHOD_NOT_ALLOWED"
