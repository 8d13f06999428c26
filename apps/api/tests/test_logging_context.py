from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Lead, User
from app.logging import JsonLogFormatter
from app.main import app


ACTORS = {
    "dana": AuthUser(sub="dana", role="DIRECTOR", name="Dana Dean"),
    "carol": AuthUser(sub="carol", role="BDR", name="Carol Chen"),
}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    state = {"actor": "dana"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_current_user() -> AuthUser:
        return ACTORS[state["actor"]]

    def set_actor(actor: str) -> None:
        state["actor"] = actor

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_current_user
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(
    client: tuple[TestClient, Callable[[str], None]],
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, _ = client
    caplog.set_level(logging.INFO)

    response = test_client.get(f"/api/crm/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_security_denial_is_logged_with_reason(
    client: tuple[TestClient, Callable[[str], None]],
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, set_actor = client
    set_actor("carol")
    caplog.set_level(logging.INFO)

    response = test_client.get("/api/admin/duplicates/statistics", headers={"X-Correlation-Id": "deny-1"})
    assert response.status_code == 403

    records = [record for record in caplog.records if record.name == "app.security"]
    assert any(
        record.getMessage() == "security.denied"
        and getattr(record, "reason", None) == "missing_permission"
        and getattr(record, "user_id", None) == "carol"
        and getattr(record, "resource", None) == "DUPLICATES"
        and getattr(record, "correlation_id", None) == "deny-1"
        for record in records
    )


def test_duplicate_warning_log_carries_warning_context(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    test_client, set_actor = client
    set_actor("carol")
    db_session.add(User(id="alice", name="Alice Adams", email="alice@example.com", role="BDR"))
    db_session.add(Lead(name="John Smith", company="Acme Corp", email="john@acme.com", status="Contacted", bdr_id="alice"))
    db_session.commit()
    caplog.set_level(logging.INFO)

    response = test_client.post(
        "/api/duplicates/check",
        json={"company": "Acme Corp", "email": "john@acme.com", "action": "LEAD_CREATE"},
        headers={"X-Correlation-Id": "dup-7"},
    )
    assert response.status_code == 200
    warning_id = response.json()["warning_id"]

    records = [record for record in caplog.records if record.name == "app.duplicates"]
    assert any(
        record.getMessage() == "duplicate_warning_created"
        and getattr(record, "warning_id", None) == warning_id
        and getattr(record, "trigger_action", None) == "LEAD_CREATE"
        and getattr(record, "severity", None) == "MEDIUM"
        and getattr(record, "correlation_id", None) == "dup-7"
        for record in records
    )


def test_json_formatter_keeps_structured_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "app.duplicates",
            "levelname": "WARNING",
            "msg": "duplicate_audit_failed",
            "correlation_id": "fmt-1",
            "warning_id": "w-1",
            "error": "x" * 600,
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter("pipeline-api", "test").format(record))

    assert payload["service"] == "pipeline-api"
    assert payload["env"] == "test"
    assert payload["logger"] == "app.duplicates"
    assert payload["correlation_id"] == "fmt-1"
    assert payload["fields"]["warning_id"] == "w-1"
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]
