from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.context import RequestContext
from app.metrics import observe_audit_write_failure
from app.models.audit import AuditLog


logger = logging.getLogger("app.audit")


def write_audit_log(
    db: Session,
    context: RequestContext | None,
    user_id: str | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    *,
    success: bool = True,
    error_msg: str | None = None,
) -> AuditLog | None:
    """Append a security audit row. Failures are logged and swallowed."""

    event = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details or {},
        success=success,
        error_msg=error_msg,
        ip_address=context.ip_address if context is not None else None,
        user_agent=context.user_agent if context is not None else None,
        session_id=context.correlation_id if context is not None else None,
    )
    try:
        db.add(event)
        db.commit()
        db.refresh(event)
    except SQLAlchemyError as exc:
        db.rollback()
        observe_audit_write_failure("security")
        logger.warning(
            "audit_write_failed",
            extra={"user_id": user_id, "action": action, "resource": resource, "error": str(exc)[:500]},
        )
        return None
    return event


def list_audit_logs(
    db: Session,
    *,
    user_id: str | None = None,
    action: str | None = None,
    days: int | None = None,
    limit: int = 100,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action is not None:
        stmt = stmt.where(AuditLog.action == action)
    if days is not None:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        stmt = stmt.where(AuditLog.created_at >= since)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    return list(db.scalars(stmt))
