from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.rbac import require_access
from app.duplicates.schemas import (
    CompanyConflictsRead,
    DecisionRequest,
    DecisionResponse,
    DuplicateCheckInput,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    DuplicateMatch,
    DuplicateMatchSummary,
    DuplicateSearchResponse,
    DuplicateStatistics,
    DuplicateWarningRead,
    ExistingRecordSummary,
    MatchSummary,
    RecordOwner,
    SearchType,
)
from app.duplicates.models import UserDecision
from app.duplicates.service import duplicate_detection_service
from app.platform.security.context import SecurityContext
from app.platform.security.errors import ForbiddenError
from app.platform.security.permissions import Action, Resource


router = APIRouter(prefix="/api/duplicates", tags=["duplicates"])
admin_router = APIRouter(prefix="/api/admin/duplicates", tags=["admin.duplicates"])


def _summarize_match(match: DuplicateMatch, *, full_owner: bool) -> DuplicateMatchSummary:
    record = match.existing_record
    owner = record.owner if full_owner else RecordOwner(name=record.owner.name)
    return DuplicateMatchSummary(
        id=match.id,
        match_type=match.match_type,
        confidence=match.confidence,
        severity=match.severity,
        match_details=MatchSummary(
            type="exact" if match.match_details.get("exact_match") else "similar",
            field=match.match_type.value.lower(),
        ),
        existing_record=ExistingRecordSummary(
            type=record.type,
            company=record.company,
            last_contact_date=record.last_contact_date,
            status=record.status,
            is_active=record.is_active,
            owner=owner,
        ),
    )


@router.post("/check", response_model=DuplicateCheckResponse)
def check_duplicates(
    dto: DuplicateCheckRequest,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.DUPLICATES, Action.READ), (Resource.LEADS, Action.CREATE))),
) -> DuplicateCheckResponse:
    data = DuplicateCheckInput.model_validate(dto.model_dump(mode="json", exclude={"action"}))
    result = duplicate_detection_service.check_for_duplicates(db, data, ctx.user_id, dto.action)
    full_owner = ctx.has(Resource.USERS, Action.VIEW_ALL)
    return DuplicateCheckResponse(
        has_warning=result.has_warning,
        severity=result.severity,
        warning_id=result.warning_id,
        message=result.message,
        matches=[_summarize_match(match, full_owner=full_owner) for match in result.matches],
    )


@router.get("/check", response_model=DuplicateWarningRead)
def get_warning_details(
    warning_id: str = Query(min_length=1),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.DUPLICATES, Action.READ), (Resource.LEADS, Action.READ))),
) -> DuplicateWarningRead:
    warning = duplicate_detection_service.get_warning(db, warning_id)
    if warning.triggered_by_user_id != ctx.user_id and not ctx.has(Resource.USERS, Action.VIEW_ALL):
        raise ForbiddenError(Resource.DUPLICATES, Action.READ, "Access denied")
    return warning


@router.post("/decision", response_model=DecisionResponse)
def record_decision(
    dto: DecisionRequest,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.LEADS, Action.CREATE))),
) -> DecisionResponse:
    warning = duplicate_detection_service.record_decision(db, dto.warning_id, dto.decision, ctx.user_id, dto.reason)
    return DecisionResponse(success=True, warning_id=warning.id, decision=UserDecision(warning.user_decision))


@router.get("/search", response_model=DuplicateSearchResponse)
def search_duplicates(
    query: str = Query(min_length=2, max_length=100),
    type: SearchType = Query(default="all"),
    limit: int = Query(default=20, ge=1, le=100),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.LEADS, Action.READ), (Resource.PIPELINE, Action.READ))),
) -> DuplicateSearchResponse:
    return duplicate_detection_service.search_records(
        db,
        ctx,
        query,
        search_type=type,
        limit=limit,
        include_inactive=include_inactive,
    )


@router.get("/company-conflicts", response_model=CompanyConflictsRead)
def company_conflicts(
    company: list[str] = Query(default_factory=list),
    days: int | None = Query(default=None),
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(require_access((Resource.DUPLICATES, Action.READ), (Resource.LEADS, Action.READ))),
) -> CompanyConflictsRead:
    conflicts, since = duplicate_detection_service.find_company_conflicts(db, company, days)
    return CompanyConflictsRead(conflicts=conflicts, since=since)


_require_duplicate_admin = require_access((Resource.DUPLICATES, Action.MANAGE), (Resource.DUPLICATES, Action.VIEW_ALL))


@admin_router.get("/statistics", response_model=DuplicateStatistics)
def duplicate_statistics(
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_duplicate_admin),
) -> DuplicateStatistics:
    if (date_from is None) != (date_to is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="date_from and date_to must be provided together",
        )
    date_range = (date_from, date_to) if date_from is not None and date_to is not None else None
    return duplicate_detection_service.get_duplicate_statistics(db, date_range)


@admin_router.get("/recent-warnings", response_model=list[DuplicateWarningRead])
def recent_warnings(
    limit: int = Query(default=50, ge=1, le=500),
    include_resolved: bool = Query(default=False),
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_duplicate_admin),
) -> list[DuplicateWarningRead]:
    return duplicate_detection_service.get_recent_warnings(db, limit=limit, include_resolved=include_resolved)
