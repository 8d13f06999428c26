from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.crm.models import User


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DuplicateType(StrEnum):
    COMPANY_NAME = "COMPANY_NAME"
    CONTACT_EMAIL = "CONTACT_EMAIL"
    CONTACT_PHONE = "CONTACT_PHONE"
    CONTACT_NAME = "CONTACT_NAME"
    COMPANY_DOMAIN = "COMPANY_DOMAIN"
    LINKEDIN_PROFILE = "LINKEDIN_PROFILE"


class WarningSeverity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_RANK: dict[WarningSeverity, int] = {
    WarningSeverity.LOW: 1,
    WarningSeverity.MEDIUM: 2,
    WarningSeverity.HIGH: 3,
    WarningSeverity.CRITICAL: 4,
}


class DuplicateAction(StrEnum):
    LEAD_CREATE = "LEAD_CREATE"
    LEAD_UPDATE = "LEAD_UPDATE"
    PIPELINE_CREATE = "PIPELINE_CREATE"
    PIPELINE_UPDATE = "PIPELINE_UPDATE"
    CONTACT_ADD = "CONTACT_ADD"
    COMPANY_ADD = "COMPANY_ADD"


class UserDecision(StrEnum):
    PROCEEDED = "PROCEEDED"
    CANCELLED = "CANCELLED"


class DuplicateWarning(Base):
    __tablename__ = "duplicate_warning"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    triggered_by_user_id: Mapped[str] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=False)
    trigger_action: Mapped[str] = mapped_column(String(32), nullable=False)
    warning_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    trigger_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    user_decision: Mapped[str | None] = mapped_column(String(16), nullable=True)
    decision_made: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    decision_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    proceed_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    triggered_by: Mapped[User] = relationship("User")
    potential_duplicates: Mapped[list[PotentialDuplicate]] = relationship(
        "PotentialDuplicate",
        back_populates="warning",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PotentialDuplicate.position",
    )

    __table_args__ = (Index("ix_duplicate_warning_created_at", "created_at"),)


class PotentialDuplicate(Base):
    __tablename__ = "duplicate_potential_match"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    warning_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("duplicate_warning.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    match_type: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    match_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    existing_lead_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    existing_pipeline_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    existing_company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    existing_contact_info: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    owned_by_user_id: Mapped[str | None] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=True)
    last_contact_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    record_status: Mapped[str | None] = mapped_column(String(64), nullable=True)

    warning: Mapped[DuplicateWarning] = relationship("DuplicateWarning", back_populates="potential_duplicates")
    owned_by: Mapped[User | None] = relationship("User")


class DuplicateAuditLog(Base):
    """Append-only trail of duplicate warnings and the decisions taken on them."""

    __tablename__ = "duplicate_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    warning_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    entity_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    decision_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    actual_outcome: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_duplicate_audit_log_warning_id", "warning_id"),)
