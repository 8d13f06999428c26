from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


LEAD_CLOSED_STATUSES = ("Closed",)
PIPELINE_CLOSED_STATUSES = ("Closed - Won", "Closed - Lost", "Dead")


class Territory(Base):
    __tablename__ = "territory"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    manager_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    members: Mapped[list[User]] = relationship(
        "User",
        back_populates="territory",
        foreign_keys="User.territory_id",
    )


class User(Base):
    __tablename__ = "app_user"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="BDR", server_default="BDR")
    territory_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("territory.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    territory: Mapped[Territory | None] = relationship(
        "Territory",
        back_populates="members",
        foreign_keys=[territory_id],
    )


class Lead(Base):
    __tablename__ = "crm_lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="New", server_default="New")
    source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    bdr_id: Mapped[str] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=False)
    added_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    bdr: Mapped[User] = relationship("User")

    __table_args__ = (Index("ix_crm_lead_bdr_id", "bdr_id"),)

    @property
    def is_active(self) -> bool:
        return self.status not in LEAD_CLOSED_STATUSES


class PipelineItem(Base):
    __tablename__ = "crm_pipeline_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="Pipeline", server_default="Pipeline")
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="Open", server_default="Open")
    value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    probability: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bdr_id: Mapped[str] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=False)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="SET NULL"),
        nullable=True,
    )
    added_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    bdr: Mapped[User] = relationship("User")

    __table_args__ = (Index("ix_crm_pipeline_item_bdr_id", "bdr_id"),)

    @property
    def is_active(self) -> bool:
        return self.status not in PIPELINE_CLOSED_STATUSES


class ActivityLog(Base):
    __tablename__ = "crm_activity_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bdr_id: Mapped[str] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=False)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_lead.id", ondelete="CASCADE"),
        nullable=True,
    )
    pipeline_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_pipeline_item.id", ondelete="CASCADE"),
        nullable=True,
    )
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_crm_activity_log_lead_ts", "lead_id", "timestamp"),
        Index("ix_crm_activity_log_pipeline_ts", "pipeline_item_id", "timestamp"),
    )


class FinanceEntry(Base):
    __tablename__ = "crm_finance_entry"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="Pending", server_default="Pending")
    sold_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    gbp_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    actual_gbp_received: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    commission_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    month: Mapped[str | None] = mapped_column(String(16), nullable=True)
    bdr_id: Mapped[str] = mapped_column(String(255), ForeignKey("app_user.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    bdr: Mapped[User] = relationship("User")
