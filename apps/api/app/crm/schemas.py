from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.platform.security.permissions import Resource


ExportFormat = Literal["csv", "xlsx", "json"]


class OwnerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    company: str | None
    email: str | None
    phone: str | None
    link: str | None
    title: str | None
    status: str
    source: str | None
    notes: str | None
    bdr_id: str
    bdr: OwnerRead | None = None
    added_date: datetime
    updated_at: datetime


class PipelineItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    company: str | None
    category: str
    status: str
    value: Decimal | None
    probability: int | None
    bdr_id: str
    bdr: OwnerRead | None = None
    lead_id: UUID | None
    added_date: datetime
    last_updated: datetime


class FinanceEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company: str
    status: str
    sold_amount: Decimal | None
    gbp_amount: Decimal | None
    actual_gbp_received: Decimal | None
    commission_paid: bool
    month: str | None
    bdr_id: str
    created_at: datetime


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _ordered(self) -> DateRange:
        if self.end < self.start:
            raise ValueError("date_range.end must not be before date_range.start")
        return self


class ExportRequestBody(BaseModel):
    resource: Resource
    format: ExportFormat = "csv"
    fields: list[str] | None = None
    date_range: DateRange | None = None
    filters: dict[str, Any] = Field(default_factory=dict)


class ExportApprovalRequestBody(ExportRequestBody):
    justification: str = Field(min_length=1, max_length=2000)


class ExportApprovalResponse(BaseModel):
    request_id: str
    status: Literal["pending"] = "pending"


class ExportRestrictionsRead(BaseModel):
    max_records: int
    allowed_fields: list[str]
    sensitive_fields: list[str]
    require_approval: bool
    allowed_formats: list[str]


class ExportRestrictionsResponse(BaseModel):
    allowed: bool
    restrictions: ExportRestrictionsRead | None = None
    reason: str | None = None


class ExportMetadata(BaseModel):
    total_records: int
    exported_records: int
    format: ExportFormat
    exported_by: str
    exported_at: datetime
    restrictions: ExportRestrictionsRead | None = None


class ExportResponse(BaseModel):
    data: list[dict[str, Any]]
    metadata: ExportMetadata


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str | None
    action: str
    resource: str
    resource_id: str | None
    details: dict[str, Any]
    success: bool
    error_msg: str | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


class ExportHistoryResponse(BaseModel):
    history: list[AuditLogRead]
