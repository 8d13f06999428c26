from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.auth import AuthUser
from app.core.config import get_settings
from app.core.database import Base
from app.crm.models import ActivityLog, Lead, PipelineItem, Territory, User
from app.duplicates.models import (
    DuplicateAction,
    DuplicateAuditLog,
    DuplicateType,
    DuplicateWarning,
    PotentialDuplicate,
    UserDecision,
    WarningSeverity,
)
from app.duplicates.schemas import DuplicateCheckInput
from app.duplicates.service import (
    calculate_match_severity,
    duplicate_detection_service,
    format_time_ago,
)
from app.platform.security.service import security_service


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
def people(db_session: Session) -> dict[str, User]:
    db_session.add_all(
        [
            Territory(id="north", name="North", manager_id="mona"),
            Territory(id="south", name="South"),
        ]
    )
    users = {
        "alice": User(id="alice", name="Alice Adams", email="alice@example.com", role="BDR", territory_id="north"),
        "carol": User(id="carol", name="Carol Chen", email="carol@example.com", role="BDR", territory_id="north"),
        "bob": User(id="bob", name="Bob Brown", email="bob@example.com", role="BDR", territory_id="south"),
        "mona": User(id="mona", name="Mona Moss", email="mona@example.com", role="MANAGER"),
    }
    db_session.add_all(users.values())
    db_session.commit()
    return users


@pytest.fixture()
def acme_lead(db_session: Session, people: dict[str, User]) -> Lead:
    lead = Lead(
        name="John Smith",
        company="Acme Corp",
        email="john@acme.com",
        phone="+1 (555) 123-4567",
        link="https://linkedin.com/in/johnsmith",
        status="Contacted",
        bdr_id="alice",
    )
    db_session.add(lead)
    db_session.flush()
    db_session.add(
        ActivityLog(
            bdr_id="alice",
            lead_id=lead.id,
            activity_type="call",
            timestamp=datetime.now(timezone.utc) - timedelta(days=10),
        )
    )
    db_session.commit()
    return lead


def _add_lead(session: Session, **values: object) -> Lead:
    lead = Lead(**values)
    session.add(lead)
    session.commit()
    return lead


def _count(session: Session, model: type) -> int:
    return int(session.scalar(select(func.count()).select_from(model)) or 0)


def test_colleague_recent_company_contact_is_critical(db_session: Session, acme_lead: Lead) -> None:
    data = DuplicateCheckInput(
        name="John Smith",
        email="john@acme.com",
        phone="+1 555 123 4567",
        company="Acme Corporation",
        linkedin_url="https://www.linkedin.com/in/johnsmith/",
    )

    result = duplicate_detection_service.check_for_duplicates(db_session, data, "carol", DuplicateAction.LEAD_CREATE)

    assert result.has_warning is True
    assert result.severity == WarningSeverity.CRITICAL
    assert result.warning_id is not None
    assert {match.match_type for match in result.matches} == {
        DuplicateType.COMPANY_NAME,
        DuplicateType.CONTACT_EMAIL,
        DuplicateType.CONTACT_PHONE,
        DuplicateType.CONTACT_NAME,
        DuplicateType.LINKEDIN_PROFILE,
    }
    assert result.matches[0].id == f"lead-company-{acme_lead.id}"
    assert result.matches[-1].match_type == DuplicateType.LINKEDIN_PROFILE
    assert result.message == "Potential duplicate detected: Similar company name was contacted 10 days ago by Alice Adams"

    warning = db_session.get(DuplicateWarning, result.warning_id)
    assert warning is not None
    assert warning.triggered_by_user_id == "carol"
    assert warning.warning_type == DuplicateType.COMPANY_NAME.value
    assert warning.trigger_data["company"] == "Acme Corporation"
    assert warning.decision_made is False
    assert len(warning.potential_duplicates) == len(result.matches)
    assert {row.owned_by_user_id for row in warning.potential_duplicates} == {"alice"}

    audit = db_session.scalars(select(DuplicateAuditLog)).one()
    assert audit.action == "warning_shown"
    assert audit.warning_id == result.warning_id
    assert audit.entity_type == "lead"
    assert audit.details["highest_severity"] == "CRITICAL"


def test_own_records_never_match(db_session: Session, acme_lead: Lead) -> None:
    data = DuplicateCheckInput(name="John Smith", email="john@acme.com", company="Acme Corp")

    result = duplicate_detection_service.check_for_duplicates(db_session, data, "alice")

    assert result.has_warning is False
    assert result.matches == []
    assert result.message is None
    assert _count(db_session, DuplicateWarning) == 0


def test_phone_suffix_match_scores_lower_than_exact(db_session: Session, people: dict[str, User]) -> None:
    lead = _add_lead(db_session, name="Ann Other", phone="+44 555 1234567", bdr_id="bob")

    matches = duplicate_detection_service.find_phone_matches(db_session, "(555) 1234567", "carol")

    assert len(matches) == 1
    match = matches[0]
    assert match.id == f"lead-phone-{lead.id}"
    assert match.confidence == pytest.approx(0.8)
    assert match.match_details["exact_match"] is False
    assert match.match_details["ends_match"] is True
    assert match.severity == WarningSeverity.MEDIUM


def test_short_phone_numbers_are_ignored(db_session: Session, people: dict[str, User]) -> None:
    _add_lead(db_session, name="Ann Other", phone="12345", bdr_id="bob")

    assert duplicate_detection_service.find_phone_matches(db_session, "12345", "carol") == []


def test_company_similarity_threshold(db_session: Session, people: dict[str, User]) -> None:
    _add_lead(db_session, name="Near", company="Abcdefghxy", bdr_id="bob")
    _add_lead(db_session, name="Far", company="Abcdefgxyz", bdr_id="bob")

    matches = duplicate_detection_service.find_company_matches(db_session, "Abcdefghij", "carol")

    assert [match.match_details["matched_company"] for match in matches] == ["Abcdefghxy"]
    assert matches[0].confidence == pytest.approx(0.8)


def test_pipeline_company_match_uses_last_update(db_session: Session, people: dict[str, User]) -> None:
    item = PipelineItem(name="Renewal", company="Initech", status="Open", bdr_id="bob")
    db_session.add(item)
    db_session.commit()

    matches = duplicate_detection_service.find_company_matches(db_session, "Initech Ltd", "carol")

    assert [match.id for match in matches] == [f"pipeline-company-{item.id}"]
    assert matches[0].existing_record.type == "pipeline"
    assert matches[0].severity == WarningSeverity.CRITICAL


def test_domain_only_match_is_low_and_not_persisted(db_session: Session, people: dict[str, User]) -> None:
    _add_lead(db_session, name="Sarah Lane", email="sarah@initech.io", bdr_id="bob")

    result = duplicate_detection_service.check_for_duplicates(
        db_session,
        DuplicateCheckInput(email="peter@initech.io"),
        "carol",
    )

    assert result.has_warning is False
    assert result.severity == WarningSeverity.LOW
    assert [match.match_type for match in result.matches] == [DuplicateType.COMPANY_DOMAIN]
    assert result.warning_id is None
    assert result.message == "1 potential duplicate(s) found. Please review before proceeding."
    assert _count(db_session, DuplicateWarning) == 0


def test_domain_scan_skips_exact_email(db_session: Session, people: dict[str, User]) -> None:
    _add_lead(db_session, name="Peter Gibbons", email="Peter@Initech.io ", bdr_id="bob")

    matches = duplicate_detection_service.find_email_matches(db_session, "peter@initech.io", "carol")

    assert [match.match_type for match in matches] == [DuplicateType.CONTACT_EMAIL]


def test_audit_failure_does_not_block_warning(
    db_session: Session,
    acme_lead: Lead,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_audit(**_: object) -> None:
        raise RuntimeError("audit store offline")

    monkeypatch.setattr("app.duplicates.service.DuplicateAuditLog", broken_audit)

    result = duplicate_detection_service.check_for_duplicates(
        db_session,
        DuplicateCheckInput(company="Acme Corp"),
        "carol",
    )

    assert result.has_warning is True
    assert result.warning_id is not None
    assert _count(db_session, DuplicateWarning) == 1
    assert _count(db_session, DuplicateAuditLog) == 0


def test_decision_survives_audit_failure(
    db_session: Session,
    acme_lead: Lead,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    warning_id = _warn(db_session)

    def broken_audit(**_: object) -> None:
        raise RuntimeError("audit store offline")

    monkeypatch.setattr("app.duplicates.service.DuplicateAuditLog", broken_audit)

    warning = duplicate_detection_service.record_decision(db_session, warning_id, "CANCELLED", "carol", "Same buyer")

    db_session.expire_all()
    stored = db_session.get(DuplicateWarning, warning.id)
    assert stored is not None
    assert stored.decision_made is True
    assert stored.user_decision == UserDecision.CANCELLED.value
    assert stored.decision_at is not None
    actions = db_session.scalars(select(DuplicateAuditLog.action)).all()
    assert actions == ["warning_shown"]


def test_several_low_matches_raise_no_warning(db_session: Session, people: dict[str, User]) -> None:
    sarah = _add_lead(db_session, name="Sarah Lane", email="sarah@initech.io", bdr_id="bob")
    _add_lead(db_session, name="Milton Waddams", email="milton@initech.io", bdr_id="alice")
    db_session.add(
        ActivityLog(
            bdr_id="bob",
            lead_id=sarah.id,
            activity_type="call",
            timestamp=datetime.now(timezone.utc) - timedelta(days=1),
        )
    )
    db_session.commit()

    result = duplicate_detection_service.check_for_duplicates(
        db_session,
        DuplicateCheckInput(email="peter@initech.io"),
        "carol",
    )

    assert len(result.matches) == 2
    assert all(match.severity == WarningSeverity.LOW for match in result.matches)
    assert result.has_warning is False
    assert result.warning_id is None
    assert result.message == "2 potential duplicate(s) found. Please review before proceeding."
    assert _count(db_session, DuplicateWarning) == 0


def test_scan_failure_reports_no_warning(
    db_session: Session,
    acme_lead: Lead,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def explode(*_: object) -> None:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(duplicate_detection_service, "_find_matches", explode)

    result = duplicate_detection_service.check_for_duplicates(
        db_session,
        DuplicateCheckInput(company="Acme Corp"),
        "carol",
    )

    assert result.has_warning is False
    assert result.severity == WarningSeverity.LOW
    assert result.matches == []


def test_disabled_check_short_circuits(
    db_session: Session,
    acme_lead: Lead,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DUPLICATE_CHECK_ENABLED", "false")
    get_settings.cache_clear()

    result = duplicate_detection_service.check_for_duplicates(
        db_session,
        DuplicateCheckInput(company="Acme Corp"),
        "carol",
    )

    assert result.has_warning is False
    assert result.matches == []
    assert _count(db_session, DuplicateWarning) == 0


def test_severity_rules() -> None:
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)
    recent = now - timedelta(days=10)
    older = now - timedelta(days=120)
    stale = now - timedelta(days=365)

    assert calculate_match_severity(0.95, recent, now=now) == WarningSeverity.CRITICAL
    assert calculate_match_severity(0.95, older, now=now) == WarningSeverity.HIGH
    assert calculate_match_severity(0.95, stale, now=now) == WarningSeverity.MEDIUM
    assert calculate_match_severity(0.95, None, now=now) == WarningSeverity.MEDIUM
    assert calculate_match_severity(0.85, recent, now=now) == WarningSeverity.HIGH
    assert calculate_match_severity(0.85, older, now=now) == WarningSeverity.MEDIUM
    assert calculate_match_severity(0.7, recent, now=now) == WarningSeverity.LOW
    # exactly three months back no longer counts as recent
    assert calculate_match_severity(0.95, now - timedelta(days=90), now=now) == WarningSeverity.HIGH


def test_severity_never_drops_as_confidence_rises() -> None:
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)
    order = [WarningSeverity.LOW, WarningSeverity.MEDIUM, WarningSeverity.HIGH, WarningSeverity.CRITICAL]
    for last_contact in (None, now - timedelta(days=5), now - timedelta(days=150), now - timedelta(days=400)):
        ranks = [
            order.index(calculate_match_severity(confidence, last_contact, now=now))
            for confidence in (0.5, 0.79, 0.8, 0.9, 0.95, 1.0)
        ]
        assert ranks == sorted(ranks)


def test_format_time_ago_buckets() -> None:
    now = datetime(2026, 6, 1, tzinfo=timezone.utc)

    assert format_time_ago(now - timedelta(seconds=30), now=now) == "just now"
    assert format_time_ago(now - timedelta(minutes=5), now=now) == "5 minutes ago"
    assert format_time_ago(now - timedelta(hours=3), now=now) == "3 hours ago"
    assert format_time_ago(now - timedelta(days=45), now=now) == "1 months ago"
    assert format_time_ago(now - timedelta(days=800), now=now) == "2 years ago"


def _warn(session: Session) -> uuid.UUID:
    result = duplicate_detection_service.check_for_duplicates(session, DuplicateCheckInput(company="Acme Corp"), "carol")
    assert result.warning_id is not None
    return result.warning_id


def test_record_decision_updates_warning_and_audits(db_session: Session, acme_lead: Lead) -> None:
    warning_id = _warn(db_session)

    warning = duplicate_detection_service.record_decision(
        db_session,
        str(warning_id),
        "proceeded",
        "carol",
        "Different department",
    )

    assert warning.user_decision == UserDecision.PROCEEDED.value
    assert warning.decision_made is True
    assert warning.decision_at is not None
    assert warning.proceed_reason == "Different department"
    actions = db_session.scalars(select(DuplicateAuditLog.action).order_by(DuplicateAuditLog.timestamp)).all()
    assert actions == ["warning_shown", "proceeded_anyway"]


def test_record_decision_rejects_bad_input(db_session: Session, acme_lead: Lead) -> None:
    warning_id = _warn(db_session)

    with pytest.raises(HTTPException) as bad_decision:
        duplicate_detection_service.record_decision(db_session, warning_id, "IGNORED", "carol")
    assert bad_decision.value.status_code == 422

    with pytest.raises(HTTPException) as bad_id:
        duplicate_detection_service.record_decision(db_session, "not-a-uuid", "CANCELLED", "carol")
    assert bad_id.value.status_code == 422

    with pytest.raises(HTTPException) as missing:
        duplicate_detection_service.record_decision(db_session, uuid.uuid4(), "CANCELLED", "carol")
    assert missing.value.status_code == 404


def test_statistics_and_recent_warnings(db_session: Session, acme_lead: Lead) -> None:
    first = _warn(db_session)
    _warn(db_session)
    duplicate_detection_service.record_decision(db_session, first, UserDecision.PROCEEDED, "carol")

    stats = duplicate_detection_service.get_duplicate_statistics(db_session)
    assert stats.total_warnings == 2
    assert stats.proceed_count == 1
    assert stats.cancelled_count == 0
    assert stats.proceed_rate == pytest.approx(50.0)
    assert stats.severity_breakdown == {"CRITICAL": 2}

    long_ago = datetime(2020, 1, 1, tzinfo=timezone.utc)
    empty = duplicate_detection_service.get_duplicate_statistics(db_session, (long_ago, long_ago + timedelta(days=1)))
    assert empty.total_warnings == 0
    assert empty.proceed_rate == 0.0

    open_warnings = duplicate_detection_service.get_recent_warnings(db_session)
    assert len(open_warnings) == 1
    assert open_warnings[0].triggered_by_name == "Carol Chen"
    assert open_warnings[0].potential_duplicates[0].owner_name == "Alice Adams"

    everything = duplicate_detection_service.get_recent_warnings(db_session, include_resolved=True)
    assert {warning.id for warning in everything} >= {first}
    assert len(everything) == 2

    with pytest.raises(HTTPException) as too_many:
        duplicate_detection_service.get_recent_warnings(db_session, limit=0)
    assert too_many.value.status_code == 422


def test_get_warning_details(db_session: Session, acme_lead: Lead) -> None:
    warning_id = _warn(db_session)

    details = duplicate_detection_service.get_warning(db_session, str(warning_id))

    assert details.id == warning_id
    assert details.trigger_action == DuplicateAction.LEAD_CREATE
    assert details.potential_duplicates[0].existing_lead_id == acme_lead.id
    assert details.potential_duplicates[0].last_contact_date is not None

    with pytest.raises(HTTPException) as missing:
        duplicate_detection_service.get_warning(db_session, uuid.uuid4())
    assert missing.value.status_code == 404


def test_company_conflicts_map(db_session: Session, acme_lead: Lead) -> None:
    _warn(db_session)

    conflicts, since = duplicate_detection_service.find_company_conflicts(db_session, ["Acme Corp", "Globex", ""])

    assert conflicts == {"Acme Corp": True, "Globex": False}
    assert since is not None
    assert duplicate_detection_service.find_company_conflicts(db_session, []) == ({}, None)
    assert _count(db_session, PotentialDuplicate) == 1


def test_search_respects_row_level_scope(db_session: Session, acme_lead: Lead) -> None:
    closed = _add_lead(db_session, name="Old Deal", company="Acme Labs", status="Closed", bdr_id="alice")
    hidden = _add_lead(db_session, name="Southern Acme", company="Acme South", bdr_id="bob")
    item = PipelineItem(name="Acme Expansion", company="Acme Corp", status="Open", bdr_id="alice")
    db_session.add(item)
    db_session.commit()

    manager = security_service.get_security_context(
        db_session,
        AuthUser(sub="mona", role="MANAGER", managed_territory_ids=["north"]),
    )
    assert manager is not None
    found = duplicate_detection_service.search_records(db_session, manager, "acme")

    ids = {hit.id for hit in found.results}
    assert ids == {f"lead-{acme_lead.id}", f"pipeline-{item.id}"}
    assert f"lead-{hidden.id}" not in ids
    assert all(hit.relevance_score == 1.0 for hit in found.results)
    assert found.total_found == 2

    with_inactive = duplicate_detection_service.search_records(db_session, manager, "acme", include_inactive=True)
    assert f"lead-{closed.id}" in {hit.id for hit in with_inactive.results}

    carol = security_service.get_security_context(db_session, AuthUser(sub="carol", role="BDR"))
    assert carol is not None
    assert duplicate_detection_service.search_records(db_session, carol, "acme").total_found == 0


def test_search_by_phone_only(db_session: Session, acme_lead: Lead) -> None:
    admin = security_service.get_security_context(db_session, AuthUser(sub="root", role="ADMIN"))
    assert admin is not None

    found = duplicate_detection_service.search_records(db_session, admin, "123-4567", search_type="phone")

    assert [hit.id for hit in found.results] == [f"lead-{acme_lead.id}"]
    assert found.search_type == "phone"
