import os
import sys
import pathlib
import tempfile
import uuid

import pytest

# --- Make sure the project root is importable before loading the app ---
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# SQLite on a temporary file (stable across the TestClient threads)
TEST_DIR = tempfile.mkdtemp(prefix="tasktracker_tests_")
DB_PATH = pathlib.Path(TEST_DIR) / "test.db"
os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_ENV"] = "test"

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tasktracker_app import models
from tasktracker_app.database import Base
from tasktracker_app.main import create_app
from tasktracker_app.settings import Settings

PASSWORD = "Secret123"


def make_settings(**overrides) -> Settings:
    """Settings for tests: cheap bcrypt, limiter off unless a test turns it on."""
    values = {
        "DATABASE_URL": os.environ["DATABASE_URL"],
        "SECRET_KEY": "test-secret-key",
        "BCRYPT_ROUNDS": 4,
        "RATE_LIMIT_MAX_REQUESTS": 0,
        "APP_ENV": "test",
    }
    values.update(overrides)
    return Settings(**values)


app = create_app(make_settings())
engine = app.state.engine
TestingSessionLocal = app.state.session_factory


@pytest.fixture(scope="session", autouse=True)
def _schema():
    """
    Create the schema when the session starts and drop it at the end.
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db() -> Session:
    """
    DB session per test.
    """
    s = TestingSessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def services():
    return app.state.services


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def unique_email(prefix: str = "tester") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}@example.com"


@pytest.fixture()
def make_user(db: Session, services):
    """
    Create a user straight through the service layer.
    """
    from tasktracker_app.schemas import UserRegister

    def _make(email: str | None = None, password: str = PASSWORD, name: str | None = "Tester") -> models.User:
        payload = UserRegister(email=email or unique_email(), password=password, name=name)
        return services.users.create(db, payload)

    return _make


@pytest.fixture()
def register(client):
    """
    Register through the API and return (user json, token).
    """
    def _register(email: str | None = None, password: str = PASSWORD, name: str = "Tester"):
        r = client.post(
            "/api/auth/register",
            json={"email": email or unique_email(), "password": password, "name": name},
        )
        assert r.status_code == 201, r.text
        data = r.json()["data"]
        return data["user"], data["token"]

    return _register


@pytest.fixture()
def auth_headers(register):
    _, token = register()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def api_create(client, auth_headers):
    """
    Helper for creating tasks concisely in tests.
    """
    def _make(title: str, headers: dict | None = None, **fields):
        r = client.post("/api/tasks", json={"title": title, **fields}, headers=headers or auth_headers)
        assert r.status_code == 201, r.text
        return r.json()["data"]

    return _make
