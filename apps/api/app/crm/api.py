from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.core.context import RequestContext
from app.core.database import get_db
from app.core.rbac import require_access
from app.crm.exports import RENDERABLE_FORMATS, data_export_service, render_csv, restrictions_read
from app.crm.models import FinanceEntry, Lead, PipelineItem
from app.crm.schemas import (
    AuditLogRead,
    ExportApprovalRequestBody,
    ExportApprovalResponse,
    ExportHistoryResponse,
    ExportRequestBody,
    ExportResponse,
    ExportRestrictionsResponse,
    FinanceEntryRead,
    LeadRead,
    PipelineItemRead,
)
from app.platform.security.context import SecurityContext
from app.platform.security.errors import ForbiddenError
from app.platform.security.exports import ExportRequest, can_export
from app.platform.security.permissions import Action, Resource
from app.platform.security.rls import apply_access_filter, emit_access_denied
from app.platform.security.service import security_service


router = APIRouter(prefix="/api/crm", tags=["crm"])
export_router = APIRouter(prefix="/api/export", tags=["export"])

_require_exporter = require_access(
    (Resource.REPORTS, Action.EXPORT),
    (Resource.LEADS, Action.EXPORT),
    (Resource.PIPELINE, Action.EXPORT),
    (Resource.FINANCE, Action.EXPORT),
    # execute_export writes the EXPORT audit row itself
    audit_success=False,
)
_require_reader = require_access(
    (Resource.REPORTS, Action.READ),
    (Resource.LEADS, Action.READ),
    (Resource.PIPELINE, Action.READ),
    (Resource.FINANCE, Action.READ),
)


def _request_context(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


def _secure_rows(
    db: Session,
    ctx: SecurityContext,
    model: type,
    resource: Resource,
    where: dict[str, Any],
    order_by: Any,
    limit: int,
    offset: int,
) -> list[Any]:
    query = security_service.build_secure_query({"where": where} if where else {}, ctx, resource)
    stmt = apply_access_filter(select(model), model, query.get("where"))
    if hasattr(model, "bdr"):
        stmt = stmt.options(selectinload(model.bdr))
    return list(db.scalars(stmt.order_by(order_by.desc()).offset(offset).limit(limit)).all())


@router.get("/leads", response_model=list[LeadRead])
def list_leads(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.LEADS, Action.READ))),
) -> list[LeadRead]:
    where = {"status": status_filter} if status_filter else {}
    return _secure_rows(db, ctx, Lead, Resource.LEADS, where, Lead.added_date, limit, offset)


@router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.LEADS, Action.READ))),
) -> LeadRead:
    lead = db.scalar(select(Lead).options(selectinload(Lead.bdr)).where(Lead.id == lead_id))
    if lead is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="lead not found")
    owner = {"owner_id": lead.bdr_id, "owner_territory_id": lead.bdr.territory_id if lead.bdr else None}
    if not security_service.can_access_resource(ctx, Resource.LEADS, Action.READ, owner):
        emit_access_denied(ctx=ctx, resource=Resource.LEADS, action=Action.READ, reason="row_level")
        raise ForbiddenError(Resource.LEADS, Action.READ, "Row-level access denied")
    return lead


@router.get("/pipeline", response_model=list[PipelineItemRead])
def list_pipeline(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.PIPELINE, Action.READ))),
) -> list[PipelineItemRead]:
    where = {"status": status_filter} if status_filter else {}
    return _secure_rows(db, ctx, PipelineItem, Resource.PIPELINE, where, PipelineItem.added_date, limit, offset)


@router.get("/finance", response_model=list[FinanceEntryRead])
def list_finance(
    month: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.FINANCE, Action.READ))),
) -> list[FinanceEntryRead]:
    where = {"month": month} if month else {}
    return _secure_rows(db, ctx, FinanceEntry, Resource.FINANCE, where, FinanceEntry.created_at, limit, offset)


def _to_export_request(dto: ExportRequestBody) -> ExportRequest:
    return ExportRequest(
        resource=dto.resource,
        format=dto.format,
        fields=dto.fields,
        date_from=dto.date_range.start if dto.date_range else None,
        date_to=dto.date_range.end if dto.date_range else None,
        filters=dict(dto.filters),
    )


@export_router.post("")
def export_data(
    dto: ExportRequestBody,
    request: Request,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(_require_exporter),
) -> Response:
    export_request = _to_export_request(dto)
    result = data_export_service.execute_export(db, ctx, export_request, request_context=_request_context(request))
    if export_request.format not in RENDERABLE_FORMATS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported format")

    metadata = jsonable_encoder(result.metadata())
    stamp = datetime.now(timezone.utc).date().isoformat()
    filename = f"{export_request.resource.value.lower()}_export_{stamp}.{export_request.format}"
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "X-Export-Metadata": json.dumps(metadata),
    }
    if export_request.format == "csv":
        return Response(content=render_csv(result.data), media_type="text/csv", headers=headers)
    payload = ExportResponse(data=jsonable_encoder(result.data), metadata=metadata)
    return JSONResponse(content=jsonable_encoder(payload), headers=headers)


@export_router.get("/history", response_model=ExportHistoryResponse)
def export_history(
    days: int | None = Query(default=None, ge=1, le=365),
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(require_access((Resource.REPORTS, Action.READ))),
) -> ExportHistoryResponse:
    history = data_export_service.get_export_history(db, ctx.user_id, days)
    return ExportHistoryResponse(history=[AuditLogRead.model_validate(row) for row in history])


@export_router.get("/restrictions", response_model=ExportRestrictionsResponse)
def export_restrictions(
    resource: Resource,
    ctx: SecurityContext = Depends(require_access((Resource.REPORTS, Action.READ))),
) -> ExportRestrictionsResponse:
    decision = can_export(ctx, ExportRequest(resource=resource))
    return ExportRestrictionsResponse(
        allowed=decision.allowed,
        restrictions=restrictions_read(decision.restrictions),
        reason=decision.reason,
    )


@export_router.post(
    "/approval-requests",
    response_model=ExportApprovalResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def request_export_approval(
    dto: ExportApprovalRequestBody,
    request: Request,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(_require_reader),
) -> ExportApprovalResponse:
    request_id = data_export_service.request_export_approval(
        db,
        ctx,
        _to_export_request(dto),
        dto.justification,
        request_context=_request_context(request),
    )
    return ExportApprovalResponse(request_id=request_id)
