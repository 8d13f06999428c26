from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.models.audit import AuditLog


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


def test_generated_correlation_id_matches_error_envelope(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client

    response = test_client.get(f"/api/crm/leads/{uuid.uuid4()}")

    assert response.status_code == 404
    correlation_id = response.headers["x-correlation-id"]
    uuid.UUID(correlation_id)
    assert response.json()["correlation_id"] == correlation_id
    assert response.headers["x-request-id"] == correlation_id


def test_provided_correlation_id_is_echoed(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client

    response = test_client.get(f"/api/crm/leads/{uuid.uuid4()}", headers={"x-correlation-id": "abc-123"})

    assert response.headers["x-correlation-id"] == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


@pytest.mark.parametrize("header_value", ["has spaces", "x" * 129, "semi;colon"])
def test_invalid_correlation_id_is_replaced(
    client: tuple[TestClient, Callable[[str], None]],
    header_value: str,
) -> None:
    test_client, _ = client

    response = test_client.get("/health", headers={"x-correlation-id": header_value})

    assert response.status_code == 200
    assert response.headers["x-correlation-id"] != header_value
    uuid.UUID(response.headers["x-correlation-id"])


def test_denied_request_audit_row_carries_correlation_id(
    client: tuple[TestClient, Callable[[str], None]],
    db_session: Session,
) -> None:
    test_client, set_actor = client
    set_actor("carol")

    response = test_client.get("/api/admin/duplicates/statistics", headers={"x-correlation-id": "corr-42"})

    assert response.status_code == 403
    assert response.json()["correlation_id"] == "corr-42"
    audit = db_session.scalars(select(AuditLog).where(AuditLog.user_id == "carol")).one()
    assert audit.session_id == "corr-42"
    assert audit.success is False
