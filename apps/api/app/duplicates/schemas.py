from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator

from app.duplicates.models import DuplicateAction, DuplicateType, UserDecision, WarningSeverity


RecordSourceType = Literal["lead", "pipeline", "company", "contact"]
SearchType = Literal["company", "contact", "email", "phone", "all"]


class DuplicateCheckInput(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=255)
    linkedin_url: HttpUrl | None = None
    title: str | None = Field(default=None, max_length=255)

    @field_validator("name", "phone", "company", "title", "email", "linkedin_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def trigger_data(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DuplicateCheckRequest(DuplicateCheckInput):
    action: DuplicateAction = DuplicateAction.LEAD_CREATE


class RecordOwner(BaseModel):
    id: str | None = None
    name: str | None = None
    role: str | None = None


class ExistingRecord(BaseModel):
    id: str
    type: RecordSourceType
    name: str | None = None
    company: str | None = None
    email: str | None = None
    phone: str | None = None
    owner: RecordOwner
    last_contact_date: datetime | None = None
    status: str | None = None
    is_active: bool = True


class DuplicateMatch(BaseModel):
    id: str
    match_type: DuplicateType
    confidence: float = Field(ge=0, le=1)
    match_details: dict[str, Any] = Field(default_factory=dict)
    existing_record: ExistingRecord
    severity: WarningSeverity


class DuplicateWarningResult(BaseModel):
    has_warning: bool
    severity: WarningSeverity
    matches: list[DuplicateMatch] = Field(default_factory=list)
    warning_id: UUID | None = None
    message: str | None = None


class MatchSummary(BaseModel):
    type: Literal["exact", "similar"]
    field: str


class ExistingRecordSummary(BaseModel):
    type: RecordSourceType
    company: str | None = None
    last_contact_date: datetime | None = None
    status: str | None = None
    is_active: bool = True
    owner: RecordOwner


class DuplicateMatchSummary(BaseModel):
    id: str
    match_type: DuplicateType
    confidence: float
    severity: WarningSeverity
    match_details: MatchSummary
    existing_record: ExistingRecordSummary


class DuplicateCheckResponse(BaseModel):
    has_warning: bool
    severity: WarningSeverity
    warning_id: UUID | None = None
    message: str | None = None
    matches: list[DuplicateMatchSummary] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    warning_id: str = Field(min_length=1)
    decision: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=2000)


class DecisionResponse(BaseModel):
    success: bool
    warning_id: UUID
    decision: UserDecision


class PotentialDuplicateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    match_type: DuplicateType
    confidence: float
    severity: WarningSeverity
    match_details: dict[str, Any]
    existing_lead_id: UUID | None
    existing_pipeline_id: UUID | None
    existing_company: str | None
    existing_contact_info: dict[str, Any]
    owned_by_user_id: str | None
    owner_name: str | None = None
    last_contact_date: datetime | None
    record_status: str | None


class DuplicateWarningRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    triggered_by_user_id: str
    triggered_by_name: str | None = None
    trigger_action: DuplicateAction
    warning_type: DuplicateType
    severity: WarningSeverity
    trigger_data: dict[str, Any]
    user_decision: UserDecision | None
    decision_made: bool
    decision_at: datetime | None
    proceed_reason: str | None
    created_at: datetime
    potential_duplicates: list[PotentialDuplicateRead] = Field(default_factory=list)


class DuplicateStatistics(BaseModel):
    total_warnings: int
    proceed_count: int
    cancelled_count: int
    proceed_rate: float
    severity_breakdown: dict[str, int]


class DuplicateSearchHit(BaseModel):
    id: str
    type: Literal["lead", "pipeline"]
    name: str | None
    company: str | None
    email: str | None
    phone: str | None
    status: str | None
    added_date: datetime | None
    last_activity: datetime | None
    owner: RecordOwner
    relevance_score: float


class DuplicateSearchResponse(BaseModel):
    results: list[DuplicateSearchHit]
    total_found: int
    query: str
    search_type: SearchType


class CompanyConflictsRead(BaseModel):
    conflicts: dict[str, bool]
    since: datetime | None = None
