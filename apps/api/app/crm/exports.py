from __future__ import annotations

import csv
import io
import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy import Select, func, inspect as sa_inspect, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import get_settings
from app.core.context import RequestContext
from app.crm.models import ActivityLog, FinanceEntry, Lead, PipelineItem, User
from app.crm.schemas import ExportRestrictionsRead
from app.metrics import observe_export
from app.models.audit import AuditLog
from app.otel import get_tracer, traced
from app.platform.security.context import SecurityContext
from app.platform.security.errors import ForbiddenError
from app.platform.security.exports import ExportRequest, ExportRestrictions, can_export
from app.platform.security.permissions import Action, Resource, Role
from app.platform.security.rls import apply_access_filter
from app.platform.security.service import security_service
from app.services.audit import list_audit_logs


logger = logging.getLogger("app.exports")
tracer = get_tracer("app.exports")

EXPORT_MODELS: dict[Resource, type] = {
    Resource.LEADS: Lead,
    Resource.PIPELINE: PipelineItem,
    Resource.FINANCE: FinanceEntry,
    Resource.USERS: User,
    Resource.ACTIVITY_LOGS: ActivityLog,
}

EXPORT_DATE_COLUMNS: dict[Resource, str] = {
    Resource.LEADS: "added_date",
    Resource.PIPELINE: "added_date",
    Resource.FINANCE: "created_at",
    Resource.USERS: "created_at",
    Resource.ACTIVITY_LOGS: "timestamp",
}

RENDERABLE_FORMATS = ("csv", "json")


def restrictions_read(restrictions: ExportRestrictions | None) -> ExportRestrictionsRead | None:
    if restrictions is None:
        return None
    return ExportRestrictionsRead(
        max_records=restrictions.max_records,
        allowed_fields=list(restrictions.allowed_fields),
        sensitive_fields=list(restrictions.sensitive_fields),
        require_approval=restrictions.require_approval,
        allowed_formats=list(restrictions.allowed_formats),
    )


@dataclass(slots=True)
class ExportResult:
    data: list[dict[str, Any]]
    total_records: int
    format: str
    exported_by: str
    exported_at: datetime
    restrictions: ExportRestrictions | None

    def metadata(self) -> dict[str, Any]:
        return {
            "total_records": self.total_records,
            "exported_records": len(self.data),
            "format": self.format,
            "exported_by": self.exported_by,
            "exported_at": self.exported_at,
            "restrictions": asdict(self.restrictions) if self.restrictions is not None else None,
        }


def _serialize(row: Any) -> dict[str, Any]:
    record = {attr.key: getattr(row, attr.key) for attr in sa_inspect(row).mapper.column_attrs}
    if isinstance(row, User):
        record["territory"] = {"name": row.territory.name} if row.territory is not None else None
    elif getattr(row, "bdr", None) is not None:
        record["bdr"] = {"id": row.bdr.id, "name": row.bdr.name, "email": row.bdr.email}
    return record


def _project(record: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    return {field: record[field] for field in fields if field in record}


def render_csv(rows: list[dict[str, Any]]) -> str:
    if not rows:
        return ""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()), extrasaction="ignore")
    writer.writeheader()
    for row in jsonable_encoder(rows):
        writer.writerow(
            {key: json.dumps(value) if isinstance(value, (dict, list)) else value for key, value in row.items()}
        )
    return output.getvalue()


class DataExportService:
    def deny(
        self,
        session: Session,
        ctx: SecurityContext,
        request: ExportRequest,
        reason: str,
        *,
        request_context: RequestContext | None = None,
    ) -> ForbiddenError:
        observe_export(request.resource, "denied")
        security_service.log_action(
            session,
            user_id=ctx.user_id,
            action="EXPORT",
            resource=request.resource,
            details=self._audit_details(request),
            success=False,
            error_msg=reason,
            request_context=request_context,
        )
        logger.info("export_denied", extra={"user_id": ctx.user_id, "resource": request.resource, "reason": reason})
        return ForbiddenError(request.resource, Action.EXPORT, reason)

    def execute_export(
        self,
        session: Session,
        ctx: SecurityContext,
        request: ExportRequest,
        *,
        request_context: RequestContext | None = None,
    ) -> ExportResult:
        """Run an export under the caller's export restrictions and row-level filter."""

        with traced(
            tracer,
            "exports.execute",
            **{"export.resource": request.resource.value, "export.format": request.format},
        ) as span:

            decision = can_export(ctx, request)
            if not decision.allowed:
                raise self.deny(
                    session, ctx, request, decision.reason or "Export not allowed", request_context=request_context
                )
            restrictions = decision.restrictions

            model = EXPORT_MODELS.get(request.resource)
            if model is None:
                observe_export(request.resource, "unsupported")
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"Export not supported for resource: {request.resource}",
                )

            security_service.log_action(
                session,
                user_id=ctx.user_id,
                action="EXPORT",
                resource=request.resource,
                details={
                    **self._audit_details(request),
                    "record_limit": "unlimited" if restrictions is None or restrictions.unlimited else restrictions.max_records,
                },
                request_context=request_context,
            )

            limit = restrictions.max_records if restrictions is not None and restrictions.max_records > 0 else None
            rows, total = self._fetch(session, ctx, model, request, limit=limit)

            data = [_serialize(row) for row in rows]
            fields = self._selected_fields(restrictions, request)
            if fields is not None:
                data = [_project(record, fields) for record in data]
            if ctx.role != Role.ADMIN and restrictions is not None and restrictions.sensitive_fields:
                data = [
                    {key: value for key, value in record.items() if key not in restrictions.sensitive_fields}
                    for record in data
                ]

            span.set_attribute("export.records", len(data))

        observe_export(request.resource, "success")
        logger.info(
            "export_completed",
            extra={"user_id": ctx.user_id, "resource": request.resource, "match_count": len(data)},
        )
        return ExportResult(
            data=data,
            total_records=total,
            format=request.format,
            exported_by=ctx.user_id,
            exported_at=datetime.now(timezone.utc),
            restrictions=restrictions,
        )

    def get_export_history(self, session: Session, user_id: str, days: int | None = None) -> list[AuditLog]:
        window = days if days is not None else get_settings().export_history_default_days
        if window < 1:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="days must be positive")
        return list_audit_logs(session, user_id=user_id, action="EXPORT", days=window, limit=500)

    def request_export_approval(
        self,
        session: Session,
        ctx: SecurityContext,
        request: ExportRequest,
        justification: str,
        *,
        request_context: RequestContext | None = None,
    ) -> str:
        request_id = f"export_req_{int(time.time() * 1000)}"
        security_service.log_action(
            session,
            user_id=ctx.user_id,
            action="EXPORT_REQUEST",
            resource=request.resource,
            resource_id=request_id,
            details={
                "request_id": request_id,
                "format": request.format,
                "justification": justification,
                "status": "pending",
            },
            request_context=request_context,
        )
        observe_export(request.resource, "approval_requested")
        return request_id

    def _fetch(
        self,
        session: Session,
        ctx: SecurityContext,
        model: type,
        request: ExportRequest,
        *,
        limit: int | None = None,
    ) -> tuple[list[Any], int]:
        """Rows in the caller's scope, newest first and capped at ``limit``, plus the uncapped count."""

        scoped = self._scoped_statement(ctx, model, request)
        total = int(session.scalar(select(func.count()).select_from(scoped.subquery())) or 0)

        stmt = scoped
        if model is User:
            stmt = stmt.options(selectinload(User.territory))
        elif hasattr(model, "bdr"):
            stmt = stmt.options(selectinload(model.bdr))
        order_column = getattr(model, EXPORT_DATE_COLUMNS[request.resource])
        stmt = stmt.order_by(order_column.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt).all()), total

    def _scoped_statement(self, ctx: SecurityContext, model: type, request: ExportRequest) -> Select[Any]:
        where: dict[str, Any] = dict(request.filters)
        date_column = EXPORT_DATE_COLUMNS.get(request.resource)
        if date_column is not None and (request.date_from is not None or request.date_to is not None):
            bounds: dict[str, Any] = {}
            if request.date_from is not None:
                bounds["gte"] = request.date_from
            if request.date_to is not None:
                bounds["lte"] = request.date_to
            where[date_column] = bounds

        query = security_service.build_secure_query({"where": where} if where else {}, ctx, request.resource)

        try:
            return apply_access_filter(select(model), model, query.get("where"))
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    @staticmethod
    def _selected_fields(restrictions: ExportRestrictions | None, request: ExportRequest) -> list[str] | None:
        if restrictions is None or restrictions.all_fields:
            return list(request.fields) if request.fields else None
        allowed = list(restrictions.allowed_fields)
        if request.fields:
            return [field for field in request.fields if field in allowed]
        return allowed

    @staticmethod
    def _audit_details(request: ExportRequest) -> dict[str, Any]:
        return jsonable_encoder(
            {
                "format": request.format,
                "fields": request.fields,
                "date_from": request.date_from,
                "date_to": request.date_to,
                "filters": request.filters,
            }
        )


data_export_service = DataExportService()
