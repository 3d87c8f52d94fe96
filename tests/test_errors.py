# tests/test_errors.py
import logging
import sqlite3

import pytest
from fastapi.testclient import TestClient
from loguru import logger
from sqlalchemy import exc as sa_exc

from helpdesk.core.database import Base, Database
from helpdesk.core.errors import (
    ConflictError,
    InternalError,
    UnavailableError,
    ValidationError,
    classify_db_error,
    store_errors,
)
from helpdesk.core.logging import InterceptHandler
from helpdesk.core.middleware import RateLimiter
from helpdesk.main import create_app


class FakePgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def test_unique_violation_from_postgres_is_conflict():
    error = sa_exc.IntegrityError("INSERT INTO tickets", {}, FakePgError("23505"))
    assert isinstance(classify_db_error(error, "Failed"), ConflictError)


def test_unique_violation_from_sqlite_is_conflict():
    error = sa_exc.IntegrityError(
        "INSERT INTO tickets", {}, sqlite3.IntegrityError("UNIQUE constraint failed: tickets.title")
    )
    classified = classify_db_error(error, "Failed")
    assert isinstance(classified, ConflictError)
    assert classified.status_code == 409


def test_other_integrity_error_is_internal():
    error = sa_exc.IntegrityError("INSERT", {}, sqlite3.IntegrityError("NOT NULL constraint failed"))
    classified = classify_db_error(error, "Failed to create ticket. Please try again later.")
    assert isinstance(classified, InternalError)
    assert classified.message == "Failed to create ticket. Please try again later."
    assert classified.debug_details == [str(error)]


@pytest.mark.parametrize(
    "error",
    [
        sa_exc.TimeoutError("QueuePool limit reached"),
        sa_exc.OperationalError("SELECT 1", {}, FakePgError("08006")),
        sa_exc.OperationalError("SELECT 1", {}, Exception("gone"), connection_invalidated=True),
        sa_exc.OperationalError(None, None, sqlite3.OperationalError("unable to open database file")),
    ],
)
def test_unreachable_store_is_unavailable(error):
    classified = classify_db_error(error, "Failed")
    assert isinstance(classified, UnavailableError)
    assert classified.status_code == 503


def test_store_errors_leaves_ticket_errors_alone():
    with pytest.raises(ValidationError):
        with store_errors("create ticket"):
            raise ValidationError("Validation failed", ["Title is required"])


def test_store_errors_classifies_sqlalchemy_errors():
    with pytest.raises(InternalError) as info:
        with store_errors("fetch tickets"):
            raise sa_exc.OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: tickets"))
    assert info.value.message == "Failed to fetch tickets. Please try again later."


def test_internal_error_details_shown_outside_production(client, database):
    Base.metadata.drop_all(bind=database.engine)

    r = client.get("/api/tickets")
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Failed to fetch tickets. Please try again later."
    assert "no such table" in body["details"][0]


def test_internal_error_details_hidden_in_production(make_settings):
    settings = make_settings(ENVIRONMENT="production")
    database = Database(settings)
    with TestClient(create_app(settings, database)) as client:
        Base.metadata.drop_all(bind=database.engine)
        r = client.get("/api/stats")
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch statistics. Please try again later."}


def test_health_reports_unreachable_store(client, database, monkeypatch):
    def broken_ping():
        raise sa_exc.OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(database, "ping", broken_ping)
    r = client.get("/api/health")
    assert r.status_code == 503
    body = r.json()
    assert body["status"] == "ERROR"
    assert body["database"] == "Disconnected"
    assert body["error"] == "Database connection failed"


def test_oversized_body_is_rejected(make_settings):
    settings = make_settings(MAX_BODY_BYTES=64)
    with TestClient(create_app(settings)) as client:
        r = client.post("/api/tickets", json={"title": "Big one", "description": "x" * 500})
        assert r.status_code == 413
        assert r.json()["error"] == "Request too large"

        def chunks():
            yield b'{"title": "Big one", "description": "'
            for _ in range(10):
                yield b"x" * 50
            yield b'"}'

        # no Content-Length header, the body is counted as it arrives
        r = client.post("/api/tickets", content=chunks(), headers={"Content-Type": "application/json"})
        assert r.status_code == 413
        assert r.json() == {"error": "Request too large", "details": ["Maximum request body size exceeded"]}

        assert client.get("/api/stats").json()["total"] == 0


def test_small_streamed_body_is_accepted(make_settings):
    settings = make_settings(MAX_BODY_BYTES=1024)
    with TestClient(create_app(settings)) as client:

        def chunks():
            yield b'{"title": "Printer jam", '
            yield b'"description": "Paper stuck in tray two"}'

        r = client.post("/api/tickets", content=chunks(), headers={"Content-Type": "application/json"})
    assert r.status_code == 201


def test_unreachable_store_returns_503(make_settings, tmp_path):
    settings = make_settings(DATABASE_URL=f"sqlite:///{tmp_path / 'missing_dir' / 'tickets.db'}")
    # no lifespan: startup would fail waiting for the same store
    client = TestClient(create_app(settings))

    r = client.get("/api/tickets")
    assert r.status_code == 503
    assert r.json() == {"error": "Database connection failed", "details": ["Service temporarily unavailable"]}

    r = client.get("/api/health")
    assert r.status_code == 503
    assert r.json()["database"] == "Disconnected"


def test_wrong_method_is_route_not_found(client):
    r = client.patch("/api/tickets/1", json={"status": "closed"})
    assert r.status_code == 404
    assert r.json() == {
        "error": "Route not found",
        "details": ["The requested endpoint PATCH /api/tickets/1 does not exist"],
    }


def test_stdlib_records_keep_caller_location():
    records = []
    sink_id = logger.add(lambda message: records.append(message.record), level="INFO")
    std_logger = logging.getLogger("helpdesk.tests.intercept")
    std_logger.handlers = [InterceptHandler()]
    std_logger.propagate = False
    std_logger.setLevel(logging.INFO)
    try:
        std_logger.warning("from stdlib")
    finally:
        logger.remove(sink_id)

    assert [r["message"] for r in records] == ["from stdlib"]
    assert records[0]["function"] == "test_stdlib_records_keep_caller_location"


def test_rate_limit_rejects_with_retry_hint(make_settings):
    settings = make_settings(RATE_LIMIT_ENABLED=True, RATE_LIMIT_MAX_REQUESTS=2, RATE_LIMIT_WINDOW_SECONDS=60)
    with TestClient(create_app(settings)) as client:
        assert client.get("/api/stats").status_code == 200
        assert client.get("/api/stats").status_code == 200
        r = client.get("/api/stats")
        assert r.status_code == 429
        assert r.json()["error"] == "Too many requests from this IP, please try again later."
        assert 1 <= int(r.headers["Retry-After"]) <= 60

        # only the API prefix is limited
        assert client.get("/openapi.json").status_code == 200


def test_rate_limiter_window_resets():
    now = [0.0]
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=lambda: now[0])

    assert limiter.hit("10.0.0.1") is None
    assert limiter.hit("10.0.0.1") == pytest.approx(10.0)
    assert limiter.hit("10.0.0.2") is None

    now[0] = 4.0
    assert limiter.hit("10.0.0.1") == pytest.approx(6.0)

    now[0] = 10.0
    assert limiter.hit("10.0.0.1") is None
