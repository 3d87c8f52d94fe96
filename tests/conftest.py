# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from helpdesk.core.config import Settings
from helpdesk.core.database import Database
from helpdesk.main import create_app


def build_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "ENVIRONMENT": "test",
        "RATE_LIMIT_ENABLED": False,
        "DB_CONNECT_RETRIES": 1,
        "DB_CONNECT_RETRY_DELAY": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def make_settings():
    return build_settings


@pytest.fixture
def settings() -> Settings:
    return build_settings()


@pytest.fixture
def database(settings):
    db = Database(settings)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.session() as db:
        yield db


@pytest.fixture
def client(settings, database):
    app = create_app(settings, database)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_ticket(client):
    def _make(**overrides):
        payload = {
            "title": "Printer jam",
            "description": "The printer on 3rd floor is jammed and won't clear",
        }
        payload.update(overrides)
        r = client.post("/api/tickets", json=payload)
        assert r.status_code == 201, r.text
        return r.json()

    return _make
