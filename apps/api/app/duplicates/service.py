from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import get_settings
from app.crm.models import (
    LEAD_CLOSED_STATUSES,
    PIPELINE_CLOSED_STATUSES,
    ActivityLog,
    Lead,
    PipelineItem,
    User,
)
from app.duplicates.models import (
    SEVERITY_RANK,
    DuplicateAction,
    DuplicateAuditLog,
    DuplicateType,
    DuplicateWarning,
    PotentialDuplicate,
    UserDecision,
    WarningSeverity,
)
from app.duplicates.normalization import (
    calculate_string_similarity,
    extract_domain_from_email,
    normalize_company_name,
    normalize_email,
    normalize_linkedin_url,
    normalize_person_name,
    normalize_phone,
)
from app.duplicates.schemas import (
    DuplicateCheckInput,
    DuplicateMatch,
    DuplicateSearchHit,
    DuplicateSearchResponse,
    DuplicateStatistics,
    DuplicateWarningRead,
    DuplicateWarningResult,
    ExistingRecord,
    PotentialDuplicateRead,
    RecordOwner,
    SearchType,
)
from app.metrics import (
    observe_audit_write_failure,
    observe_duplicate_check,
    observe_duplicate_decision,
    observe_duplicate_match,
    observe_duplicate_warning,
)
from app.otel import get_tracer, traced
from app.platform.security.context import SecurityContext
from app.platform.security.permissions import Action, Resource, get_data_access_filter
from app.platform.security.rls import apply_access_filter


logger = logging.getLogger("app.duplicates")
tracer = get_tracer("app.duplicates")

DAY_SECONDS = 24 * 60 * 60
MONTH_SECONDS = 30 * DAY_SECONDS
YEAR_SECONDS = 365 * DAY_SECONDS

EMAIL_DOMAIN_CONFIDENCE = 0.7
PHONE_EXACT_CONFIDENCE = 1.0
PHONE_SUFFIX_CONFIDENCE = 0.8
LINKEDIN_CONFIDENCE = 0.95
PHONE_MIN_DIGITS = 7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _months_ago(months: int, now: datetime) -> datetime:
    return now - timedelta(days=months * 30)


def calculate_match_severity(
    confidence: float,
    last_contact_date: datetime | None,
    *,
    now: datetime | None = None,
) -> WarningSeverity:
    """Classify one match from its confidence and how recently its record was worked."""

    now = now or utcnow()
    last_contact = _as_utc(last_contact_date)
    within_three = last_contact is not None and last_contact > _months_ago(3, now)
    within_six = last_contact is not None and last_contact > _months_ago(6, now)

    if confidence >= 0.95:
        if within_three:
            return WarningSeverity.CRITICAL
        if within_six:
            return WarningSeverity.HIGH
        return WarningSeverity.MEDIUM
    if confidence >= 0.8:
        if within_three:
            return WarningSeverity.HIGH
        return WarningSeverity.MEDIUM
    return WarningSeverity.LOW


def calculate_overall_severity(matches: Iterable[DuplicateMatch]) -> WarningSeverity:
    overall = WarningSeverity.LOW
    for match in matches:
        if SEVERITY_RANK[match.severity] > SEVERITY_RANK[overall]:
            overall = match.severity
    return overall


def rank_matches(matches: list[DuplicateMatch]) -> list[DuplicateMatch]:
    return sorted(matches, key=lambda match: (-SEVERITY_RANK[match.severity], -match.confidence))


def format_time_ago(value: datetime, *, now: datetime | None = None) -> str:
    now = now or utcnow()
    seconds = int((now - _as_utc(value)).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < DAY_SECONDS:
        return f"{seconds // 3600} hours ago"
    if seconds < MONTH_SECONDS:
        return f"{seconds // DAY_SECONDS} days ago"
    if seconds < YEAR_SECONDS:
        return f"{seconds // MONTH_SECONDS} months ago"
    return f"{seconds // YEAR_SECONDS} years ago"


def generate_warning_message(ranked: list[DuplicateMatch], *, now: datetime | None = None) -> str | None:
    if not ranked:
        return None
    urgent = [match for match in ranked if match.severity in (WarningSeverity.HIGH, WarningSeverity.CRITICAL)]
    if not urgent:
        return f"{len(ranked)} potential duplicate(s) found. Please review before proceeding."

    match = urgent[0]
    record = match.existing_record
    time_ago = format_time_ago(record.last_contact_date, now=now) if record.last_contact_date else "some time ago"
    label = match.match_type.value.lower().replace("_", " ", 1)
    owner_name = record.owner.name or "another BDR"
    return f"Potential duplicate detected: Similar {label} was contacted {time_ago} by {owner_name}"


def _owner(user: User | None, fallback_id: str) -> RecordOwner:
    if user is None:
        return RecordOwner(id=fallback_id)
    return RecordOwner(id=user.id, name=user.name, role=user.role)


def _lead_record(lead: Lead, last_contact: datetime | None) -> ExistingRecord:
    return ExistingRecord(
        id=str(lead.id),
        type="lead",
        name=lead.name,
        company=lead.company,
        email=lead.email,
        phone=lead.phone,
        owner=_owner(lead.bdr, lead.bdr_id),
        last_contact_date=_as_utc(last_contact),
        status=lead.status,
        is_active=lead.is_active,
    )


def _pipeline_record(item: PipelineItem, last_contact: datetime | None) -> ExistingRecord:
    return ExistingRecord(
        id=str(item.id),
        type="pipeline",
        name=item.name,
        company=item.company,
        email=item.email,
        phone=item.phone,
        owner=_owner(item.bdr, item.bdr_id),
        last_contact_date=_as_utc(last_contact),
        status=item.status,
        is_active=item.is_active,
    )


def _search_relevance(query: str, name: str | None, company: str | None, email: str | None) -> float:
    normalized_query = query.lower().strip()
    normalized_name = normalize_person_name(name)
    normalized_company = normalize_company_name(company)
    score = 0.0

    if normalized_name and normalized_query in normalized_name:
        score = 1.0
    if normalized_company and normalized_query in normalized_company:
        score = 1.0
    if email and normalized_query in normalize_email(email):
        score = 1.0

    if normalized_name:
        score = max(score, calculate_string_similarity(normalized_query, normalized_name) * 0.9)
    if normalized_company:
        score = max(score, calculate_string_similarity(normalized_query, normalized_company) * 0.9)

    for term in normalized_query.split(" "):
        if len(term) < 2:
            continue
        if term in normalized_name or term in normalized_company:
            score = max(score, 0.6)
    return score


class DuplicateDetectionService:
    # Matching

    def check_for_duplicates(
        self,
        session: Session,
        data: DuplicateCheckInput,
        user_id: str,
        action: DuplicateAction = DuplicateAction.LEAD_CREATE,
    ) -> DuplicateWarningResult:
        """Score ``data`` against other BDRs' records and persist a warning when it matters.

        Never raises: any failure while scanning or persisting is logged and reported as
        "no warning" so the caller's create flow carries on.
        """

        settings = get_settings()
        started = time.perf_counter()
        with traced(tracer, "duplicates.check", **{"duplicates.action": action.value}) as span:
            if not settings.duplicate_check_enabled:
                observe_duplicate_check("disabled", time.perf_counter() - started)
                return DuplicateWarningResult(has_warning=False, severity=WarningSeverity.LOW)

            try:
                matches = self._find_matches(session, data, user_id)
                ranked = rank_matches(matches)
                severity = calculate_overall_severity(ranked)
                has_warning = bool(ranked) and severity != WarningSeverity.LOW

                warning_id: uuid.UUID | None = None
                if has_warning:
                    warning = self._persist_warning(session, data, user_id, action, ranked, severity)
                    warning_id = warning.id
                    observe_duplicate_warning(severity.value)
                    logger.info(
                        "duplicate_warning_created",
                        extra={
                            "user_id": user_id,
                            "warning_id": str(warning_id),
                            "trigger_action": action.value,
                            "severity": severity.value,
                            "match_count": len(ranked),
                        },
                    )
                    self.log_duplicate_audit(
                        session,
                        user_id,
                        "warning_shown",
                        warning_id,
                        {
                            "entity_type": "lead" if "LEAD" in action.value else "pipeline",
                            "match_count": len(ranked),
                            "highest_severity": severity.value,
                        },
                    )
            except Exception as exc:
                session.rollback()
                span.record_exception(exc)
                observe_duplicate_check("error", time.perf_counter() - started)
                logger.exception("duplicate_check_failed", extra={"user_id": user_id, "error": str(exc)[:500]})
                return DuplicateWarningResult(has_warning=False, severity=WarningSeverity.LOW)

            for match in ranked:
                observe_duplicate_match(match.match_type.value, match.severity.value)
            observe_duplicate_check("warning" if has_warning else "clear", time.perf_counter() - started)
            span.set_attribute("duplicates.match_count", len(ranked))
            span.set_attribute("duplicates.severity", severity.value)
            return DuplicateWarningResult(
                has_warning=has_warning,
                severity=severity,
                matches=ranked,
                warning_id=warning_id,
                message=generate_warning_message(ranked),
            )

    def _find_matches(self, session: Session, data: DuplicateCheckInput, user_id: str) -> list[DuplicateMatch]:
        matches: list[DuplicateMatch] = []
        if data.company:
            matches.extend(self.find_company_matches(session, data.company, user_id))
        if data.email:
            matches.extend(self.find_email_matches(session, str(data.email), user_id))
        if data.phone:
            matches.extend(self.find_phone_matches(session, data.phone, user_id))
        if data.name:
            matches.extend(self.find_name_matches(session, data.name, user_id))
        if data.linkedin_url:
            matches.extend(self.find_linkedin_matches(session, str(data.linkedin_url), user_id))
        return matches

    def _latest_activity(
        self,
        session: Session,
        column: Any,
        record_ids: list[uuid.UUID],
        since: datetime | None = None,
    ) -> dict[uuid.UUID, datetime]:
        if not record_ids:
            return {}
        stmt = select(column, func.max(ActivityLog.timestamp)).where(column.in_(record_ids)).group_by(column)
        if since is not None:
            stmt = stmt.where(ActivityLog.timestamp >= since)
        return {record_id: _as_utc(latest) for record_id, latest in session.execute(stmt).all()}

    def _other_owners_leads(self, user_id: str) -> Any:
        return select(Lead).options(selectinload(Lead.bdr)).where(Lead.bdr_id != user_id)

    def find_company_matches(self, session: Session, company: str, user_id: str) -> list[DuplicateMatch]:
        settings = get_settings()
        normalized = normalize_company_name(company)
        if not normalized:
            return []
        since = _months_ago(settings.duplicate_company_lookback_months, utcnow())
        matches: list[DuplicateMatch] = []

        leads = session.scalars(self._other_owners_leads(user_id).where(Lead.company.is_not(None))).all()
        scored_leads = [
            (lead, calculate_string_similarity(normalized, normalize_company_name(lead.company))) for lead in leads
        ]
        scored_leads = [(lead, score) for lead, score in scored_leads if score >= settings.duplicate_company_threshold]
        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead, _ in scored_leads], since)
        for lead, similarity in scored_leads:
            last_contact = activity.get(lead.id)
            matches.append(
                DuplicateMatch(
                    id=f"lead-company-{lead.id}",
                    match_type=DuplicateType.COMPANY_NAME,
                    confidence=similarity,
                    match_details={
                        "original_company": company,
                        "matched_company": lead.company,
                        "similarity": similarity,
                    },
                    existing_record=_lead_record(lead, last_contact),
                    severity=calculate_match_severity(similarity, last_contact),
                )
            )

        items = session.scalars(
            select(PipelineItem)
            .options(selectinload(PipelineItem.bdr))
            .where(PipelineItem.bdr_id != user_id, PipelineItem.company.is_not(None))
        ).all()
        scored_items = [
            (item, calculate_string_similarity(normalized, normalize_company_name(item.company))) for item in items
        ]
        scored_items = [(item, score) for item, score in scored_items if score >= settings.duplicate_company_threshold]
        activity = self._latest_activity(
            session,
            ActivityLog.pipeline_item_id,
            [item.id for item, _ in scored_items],
            since,
        )
        for item, similarity in scored_items:
            # Pipeline items without logged activity fall back to their last update.
            last_contact = activity.get(item.id) or item.last_updated
            matches.append(
                DuplicateMatch(
                    id=f"pipeline-company-{item.id}",
                    match_type=DuplicateType.COMPANY_NAME,
                    confidence=similarity,
                    match_details={
                        "original_company": company,
                        "matched_company": item.company,
                        "similarity": similarity,
                    },
                    existing_record=_pipeline_record(item, last_contact),
                    severity=calculate_match_severity(similarity, last_contact),
                )
            )
        return matches

    def find_email_matches(self, session: Session, email: str, user_id: str) -> list[DuplicateMatch]:
        settings = get_settings()
        normalized = normalize_email(email)
        domain = extract_domain_from_email(normalized)
        stored_email = func.lower(func.trim(Lead.email))
        matches: list[DuplicateMatch] = []

        exact = session.scalars(self._other_owners_leads(user_id).where(stored_email == normalized)).all()
        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead in exact])
        for lead in exact:
            last_contact = activity.get(lead.id)
            matches.append(
                DuplicateMatch(
                    id=f"lead-email-{lead.id}",
                    match_type=DuplicateType.CONTACT_EMAIL,
                    confidence=1.0,
                    match_details={"original_email": email, "matched_email": lead.email, "exact_match": True},
                    existing_record=_lead_record(lead, last_contact),
                    severity=calculate_match_severity(1.0, last_contact),
                )
            )

        if not domain:
            return matches

        same_domain = session.scalars(
            self._other_owners_leads(user_id)
            .where(stored_email.contains(f"@{domain}"), stored_email != normalized)
            .order_by(Lead.added_date.desc())
            .limit(settings.duplicate_domain_match_limit)
        ).all()
        since = _months_ago(settings.duplicate_domain_lookback_months, utcnow())
        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead in same_domain], since)
        for lead in same_domain:
            last_contact = activity.get(lead.id)
            matches.append(
                DuplicateMatch(
                    id=f"lead-domain-{lead.id}",
                    match_type=DuplicateType.COMPANY_DOMAIN,
                    confidence=EMAIL_DOMAIN_CONFIDENCE,
                    match_details={"original_domain": domain, "matched_email": lead.email, "same_domain": True},
                    existing_record=_lead_record(lead, last_contact),
                    severity=calculate_match_severity(EMAIL_DOMAIN_CONFIDENCE, last_contact),
                )
            )
        return matches

    def find_phone_matches(self, session: Session, phone: str, user_id: str) -> list[DuplicateMatch]:
        normalized = normalize_phone(phone)
        if len(normalized) < PHONE_MIN_DIGITS:
            return []

        candidates: list[tuple[Lead, bool, bool]] = []
        for lead in session.scalars(self._other_owners_leads(user_id).where(Lead.phone.is_not(None))).all():
            existing = normalize_phone(lead.phone)
            exact_match = existing == normalized
            ends_match = len(existing) >= PHONE_MIN_DIGITS and existing[-7:] == normalized[-7:]
            if exact_match or ends_match:
                candidates.append((lead, exact_match, ends_match))

        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead, _, _ in candidates])
        matches: list[DuplicateMatch] = []
        for lead, exact_match, ends_match in candidates:
            confidence = PHONE_EXACT_CONFIDENCE if exact_match else PHONE_SUFFIX_CONFIDENCE
            last_contact = activity.get(lead.id)
            matches.append(
                DuplicateMatch(
                    id=f"lead-phone-{lead.id}",
                    match_type=DuplicateType.CONTACT_PHONE,
                    confidence=confidence,
                    match_details={
                        "original_phone": phone,
                        "matched_phone": lead.phone,
                        "exact_match": exact_match,
                        "ends_match": ends_match,
                    },
                    existing_record=_lead_record(lead, last_contact),
                    severity=calculate_match_severity(confidence, last_contact),
                )
            )
        return matches

    def find_name_matches(self, session: Session, name: str, user_id: str) -> list[DuplicateMatch]:
        settings = get_settings()
        normalized = normalize_person_name(name)
        if not normalized:
            return []

        scored = [
            (lead, calculate_string_similarity(normalized, normalize_person_name(lead.name)))
            for lead in session.scalars(self._other_owners_leads(user_id)).all()
        ]
        scored = [(lead, score) for lead, score in scored if score >= settings.duplicate_name_threshold]
        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead, _ in scored])
        return [
            DuplicateMatch(
                id=f"lead-name-{lead.id}",
                match_type=DuplicateType.CONTACT_NAME,
                confidence=similarity,
                match_details={"original_name": name, "matched_name": lead.name, "similarity": similarity},
                existing_record=_lead_record(lead, activity.get(lead.id)),
                severity=calculate_match_severity(similarity, activity.get(lead.id)),
            )
            for lead, similarity in scored
        ]

    def find_linkedin_matches(self, session: Session, linkedin_url: str, user_id: str) -> list[DuplicateMatch]:
        path = normalize_linkedin_url(linkedin_url)
        if not path:
            return []

        leads = session.scalars(self._other_owners_leads(user_id).where(func.lower(Lead.link).contains(path))).all()
        activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead in leads])
        return [
            DuplicateMatch(
                id=f"lead-linkedin-{lead.id}",
                match_type=DuplicateType.LINKEDIN_PROFILE,
                confidence=LINKEDIN_CONFIDENCE,
                match_details={"original_url": linkedin_url, "matched_url": lead.link},
                existing_record=_lead_record(lead, activity.get(lead.id)),
                severity=calculate_match_severity(LINKEDIN_CONFIDENCE, activity.get(lead.id)),
            )
            for lead in leads
        ]

    def _persist_warning(
        self,
        session: Session,
        data: DuplicateCheckInput,
        user_id: str,
        action: DuplicateAction,
        ranked: list[DuplicateMatch],
        severity: WarningSeverity,
    ) -> DuplicateWarning:
        warning = DuplicateWarning(
            triggered_by_user_id=user_id,
            trigger_action=action.value,
            warning_type=ranked[0].match_type.value,
            severity=severity.value,
            trigger_data=data.trigger_data(),
        )
        for position, match in enumerate(ranked):
            record = match.existing_record
            warning.potential_duplicates.append(
                PotentialDuplicate(
                    position=position,
                    match_type=match.match_type.value,
                    confidence=match.confidence,
                    severity=match.severity.value,
                    match_details=match.match_details,
                    existing_lead_id=uuid.UUID(record.id) if record.type == "lead" else None,
                    existing_pipeline_id=uuid.UUID(record.id) if record.type == "pipeline" else None,
                    existing_company=record.company,
                    existing_contact_info={"name": record.name, "email": record.email, "phone": record.phone},
                    owned_by_user_id=record.owner.id,
                    last_contact_date=record.last_contact_date,
                    record_status=record.status,
                )
            )
        session.add(warning)
        session.commit()
        session.refresh(warning)
        return warning

    # Lifecycle

    def record_decision(
        self,
        session: Session,
        warning_id: str | uuid.UUID,
        decision: str | UserDecision,
        user_id: str,
        reason: str | None = None,
    ) -> DuplicateWarning:
        try:
            parsed_decision = UserDecision(str(decision).upper())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"decision must be one of: {', '.join(item.value for item in UserDecision)}",
            )
        try:
            parsed_id = warning_id if isinstance(warning_id, uuid.UUID) else uuid.UUID(str(warning_id))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid warning id")

        warning = session.get(DuplicateWarning, parsed_id)
        if warning is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="duplicate warning not found")

        warning.user_decision = parsed_decision.value
        warning.decision_made = True
        warning.decision_at = utcnow()
        warning.proceed_reason = reason
        session.commit()
        session.refresh(warning)
        observe_duplicate_decision(parsed_decision.value)

        self.log_duplicate_audit(
            session,
            user_id,
            "proceeded_anyway" if parsed_decision == UserDecision.PROCEEDED else "cancelled",
            warning.id,
            {"decision": parsed_decision.value, "reason": reason},
        )
        return warning

    def log_duplicate_audit(
        self,
        session: Session,
        user_id: str,
        action: str,
        warning_id: uuid.UUID | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = dict(context or {})
        try:
            entry = DuplicateAuditLog(
                user_id=user_id,
                action=action,
                warning_id=warning_id,
                entity_type=context.pop("entity_type", None),
                entity_id=context.pop("entity_id", None),
                decision_reason=context.pop("reason", None),
                system_suggestion=context.pop("system_suggestion", None),
                actual_outcome=context.pop("actual_outcome", None),
                details=context,
            )
            session.add(entry)
            session.commit()
        except Exception as exc:
            session.rollback()
            observe_audit_write_failure("duplicates")
            logger.warning(
                "duplicate_audit_failed",
                extra={
                    "user_id": user_id,
                    "action": action,
                    "warning_id": str(warning_id) if warning_id else None,
                    "error": str(exc)[:500],
                },
            )

    def get_duplicate_statistics(
        self,
        session: Session,
        date_range: tuple[datetime, datetime] | None = None,
    ) -> DuplicateStatistics:
        conditions = []
        if date_range is not None:
            date_from, date_to = date_range
            conditions = [DuplicateWarning.created_at >= date_from, DuplicateWarning.created_at <= date_to]

        def _count(*extra: Any) -> int:
            stmt = select(func.count()).select_from(DuplicateWarning).where(*conditions, *extra)
            return int(session.scalar(stmt) or 0)

        total = _count()
        proceeded = _count(DuplicateWarning.user_decision == UserDecision.PROCEEDED.value)
        cancelled = _count(DuplicateWarning.user_decision == UserDecision.CANCELLED.value)
        breakdown_rows = session.execute(
            select(DuplicateWarning.severity, func.count())
            .where(*conditions)
            .group_by(DuplicateWarning.severity)
        ).all()
        return DuplicateStatistics(
            total_warnings=total,
            proceed_count=proceeded,
            cancelled_count=cancelled,
            proceed_rate=(proceeded / total) * 100 if total else 0.0,
            severity_breakdown={severity: int(count) for severity, count in breakdown_rows},
        )

    def get_recent_warnings(
        self,
        session: Session,
        limit: int = 50,
        include_resolved: bool = False,
    ) -> list[DuplicateWarningRead]:
        if limit < 1 or limit > 500:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="limit must be between 1 and 500")
        stmt = select(DuplicateWarning).options(
            selectinload(DuplicateWarning.triggered_by),
            selectinload(DuplicateWarning.potential_duplicates).selectinload(PotentialDuplicate.owned_by),
        )
        if not include_resolved:
            stmt = stmt.where(DuplicateWarning.decision_made.is_(False))
        stmt = stmt.order_by(DuplicateWarning.created_at.desc()).limit(limit)
        return [self._to_read(warning) for warning in session.scalars(stmt).all()]

    def get_warning(self, session: Session, warning_id: str | uuid.UUID) -> DuplicateWarningRead:
        try:
            parsed_id = warning_id if isinstance(warning_id, uuid.UUID) else uuid.UUID(str(warning_id))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="invalid warning id")
        warning = session.scalar(
            select(DuplicateWarning)
            .options(
                selectinload(DuplicateWarning.triggered_by),
                selectinload(DuplicateWarning.potential_duplicates).selectinload(PotentialDuplicate.owned_by),
            )
            .where(DuplicateWarning.id == parsed_id)
        )
        if warning is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="duplicate warning not found")
        return self._to_read(warning)

    def find_company_conflicts(
        self,
        session: Session,
        companies: list[str],
        days: int | None = None,
    ) -> tuple[dict[str, bool], datetime | None]:
        """Which of ``companies`` appeared as a matched company in warnings over the last ``days``."""

        requested = [company for company in companies if company]
        if not requested:
            return {}, None
        window = days if days is not None else get_settings().duplicate_conflict_default_days
        window = max(1, min(window, 365))
        since = utcnow() - timedelta(days=window)

        seen = set(
            session.scalars(
                select(PotentialDuplicate.existing_company)
                .join(DuplicateWarning, PotentialDuplicate.warning_id == DuplicateWarning.id)
                .where(
                    DuplicateWarning.created_at >= since,
                    PotentialDuplicate.existing_company.in_(requested),
                )
                .distinct()
                .limit(500)
            ).all()
        )
        return {company: company in seen for company in requested}, since

    def search_records(
        self,
        session: Session,
        ctx: SecurityContext,
        query: str,
        *,
        search_type: SearchType = "all",
        limit: int = 20,
        include_inactive: bool = False,
    ) -> DuplicateSearchResponse:
        """Relevance-ranked lookup over the leads and pipeline items the caller may see."""

        user = ctx.as_user()
        pattern = f"%{query.lower()}%"
        per_source = min(limit, 50)
        hits: list[DuplicateSearchHit] = []

        if ctx.has(Resource.LEADS, Action.READ):
            stmt = select(Lead).options(selectinload(Lead.bdr))
            stmt = apply_access_filter(stmt, Lead, get_data_access_filter(user, Resource.LEADS))
            if not include_inactive:
                stmt = stmt.where(Lead.status.not_in(LEAD_CLOSED_STATUSES))
            stmt = stmt.where(self._search_clause(Lead, pattern, query, search_type))
            leads = session.scalars(stmt.order_by(Lead.added_date.desc()).limit(per_source)).all()
            activity = self._latest_activity(session, ActivityLog.lead_id, [lead.id for lead in leads])
            for lead in leads:
                hits.append(
                    DuplicateSearchHit(
                        id=f"lead-{lead.id}",
                        type="lead",
                        name=lead.name,
                        company=lead.company,
                        email=lead.email,
                        phone=lead.phone,
                        status=lead.status,
                        added_date=_as_utc(lead.added_date),
                        last_activity=activity.get(lead.id),
                        owner=_owner(lead.bdr, lead.bdr_id),
                        relevance_score=_search_relevance(query, lead.name, lead.company, lead.email),
                    )
                )

        if ctx.has(Resource.PIPELINE, Action.READ):
            stmt = select(PipelineItem).options(selectinload(PipelineItem.bdr))
            stmt = apply_access_filter(stmt, PipelineItem, get_data_access_filter(user, Resource.PIPELINE))
            if not include_inactive:
                stmt = stmt.where(PipelineItem.status.not_in(PIPELINE_CLOSED_STATUSES))
            stmt = stmt.where(self._search_clause(PipelineItem, pattern, query, search_type))
            items = session.scalars(stmt.order_by(PipelineItem.last_updated.desc()).limit(per_source)).all()
            activity = self._latest_activity(session, ActivityLog.pipeline_item_id, [item.id for item in items])
            for item in items:
                hits.append(
                    DuplicateSearchHit(
                        id=f"pipeline-{item.id}",
                        type="pipeline",
                        name=item.name,
                        company=item.company,
                        email=item.email,
                        phone=item.phone,
                        status=item.status,
                        added_date=_as_utc(item.added_date),
                        last_activity=activity.get(item.id) or _as_utc(item.last_updated),
                        owner=_owner(item.bdr, item.bdr_id),
                        relevance_score=_search_relevance(query, item.name, item.company, item.email),
                    )
                )

        ranked = sorted(hits, key=lambda hit: hit.relevance_score, reverse=True)
        return DuplicateSearchResponse(
            results=ranked[:limit],
            total_found=len(hits),
            query=query,
            search_type=search_type,
        )

    @staticmethod
    def _search_clause(model: type, pattern: str, query: str, search_type: SearchType) -> Any:
        name = func.lower(model.name).like(pattern)
        company = func.lower(model.company).like(pattern)
        email = func.lower(model.email).like(pattern)
        phone = model.phone.contains(query)
        if search_type == "company":
            return company
        if search_type == "contact":
            return name | phone
        if search_type == "email":
            return email
        if search_type == "phone":
            return phone
        return name | company | email | phone

    @staticmethod
    def _to_read(warning: DuplicateWarning) -> DuplicateWarningRead:
        matches = []
        for duplicate in warning.potential_duplicates:
            read = PotentialDuplicateRead.model_validate(duplicate)
            read.owner_name = duplicate.owned_by.name if duplicate.owned_by is not None else None
            read.last_contact_date = _as_utc(read.last_contact_date)
            matches.append(read)
        return DuplicateWarningRead(
            id=warning.id,
            triggered_by_user_id=warning.triggered_by_user_id,
            triggered_by_name=warning.triggered_by.name if warning.triggered_by is not None else None,
            trigger_action=DuplicateAction(warning.trigger_action),
            warning_type=DuplicateType(warning.warning_type),
            severity=WarningSeverity(warning.severity),
            trigger_data=warning.trigger_data,
            user_decision=UserDecision(warning.user_decision) if warning.user_decision else None,
            decision_made=warning.decision_made,
            decision_at=_as_utc(warning.decision_at),
            proceed_reason=warning.proceed_reason,
            created_at=_as_utc(warning.created_at),
            potential_duplicates=matches,
        )


duplicate_detection_service = DuplicateDetectionService()
