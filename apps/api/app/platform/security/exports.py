from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from app.platform.security.context import SecurityContext
from app.platform.security.permissions import Resource, Role


ALL_FIELDS = ("*",)
ALL_FORMATS = ("csv", "xlsx", "json")


@dataclass(frozen=True, slots=True)
class ExportRestrictions:
    max_records: int
    allowed_fields: tuple[str, ...]
    sensitive_fields: tuple[str, ...] = ()
    require_approval: bool = False
    allowed_formats: tuple[str, ...] = ("csv",)

    @property
    def all_fields(self) -> bool:
        return self.allowed_fields == ALL_FIELDS

    @property
    def unlimited(self) -> bool:
        return self.max_records == -1


@dataclass(slots=True)
class ExportRequest:
    resource: Resource
    format: str = "csv"
    fields: list[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    filters: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class ExportDecision:
    allowed: bool
    restrictions: ExportRestrictions | None = None
    reason: str | None = None


_FORBIDDEN = ExportRestrictions(max_records=0, allowed_fields=(), require_approval=True, allowed_formats=())


def _everything(max_records: int) -> ExportRestrictions:
    return ExportRestrictions(max_records=max_records, allowed_fields=ALL_FIELDS, allowed_formats=ALL_FORMATS)


EXPORT_RESTRICTIONS: dict[Role, dict[Resource, ExportRestrictions]] = {
    Role.BDR: {
        Resource.LEADS: ExportRestrictions(
            max_records=500,
            allowed_fields=("name", "company", "status", "source", "added_date", "notes"),
            sensitive_fields=("phone", "email"),
        ),
        Resource.PIPELINE: ExportRestrictions(
            max_records=500,
            allowed_fields=("name", "company", "category", "status", "value", "probability"),
            sensitive_fields=("phone", "email"),
        ),
        Resource.FINANCE: _FORBIDDEN,
        Resource.USERS: _FORBIDDEN,
        Resource.REPORTS: ExportRestrictions(max_records=100, allowed_fields=("basic_metrics",)),
        Resource.SETTINGS: _FORBIDDEN,
        Resource.ACTIVITY_LOGS: ExportRestrictions(
            max_records=100,
            allowed_fields=("timestamp", "activity_type", "description"),
        ),
    },
    Role.TEAM_LEAD: {
        Resource.LEADS: ExportRestrictions(
            max_records=2000,
            allowed_fields=("name", "company", "status", "source", "added_date", "notes", "bdr_id"),
            sensitive_fields=("phone", "email"),
            allowed_formats=("csv", "xlsx"),
        ),
        Resource.PIPELINE: ExportRestrictions(
            max_records=2000,
            allowed_fields=("name", "company", "category", "status", "value", "probability", "bdr_id"),
            sensitive_fields=("phone", "email"),
            allowed_formats=("csv", "xlsx"),
        ),
        Resource.FINANCE: _FORBIDDEN,
        Resource.USERS: ExportRestrictions(max_records=50, allowed_fields=("name", "email", "role", "territory_id")),
        Resource.REPORTS: ExportRestrictions(
            max_records=1000,
            allowed_fields=("team_metrics", "individual_metrics"),
            allowed_formats=("csv", "xlsx"),
        ),
        Resource.SETTINGS: _FORBIDDEN,
        Resource.ACTIVITY_LOGS: ExportRestrictions(
            max_records=1000,
            allowed_fields=("timestamp", "activity_type", "description", "bdr_id"),
        ),
    },
    Role.MANAGER: {
        Resource.LEADS: _everything(10000),
        Resource.PIPELINE: _everything(10000),
        Resource.FINANCE: ExportRestrictions(
            max_records=5000,
            allowed_fields=("company", "status", "sold_amount", "gbp_amount", "month", "bdr_id"),
            sensitive_fields=("actual_gbp_received", "commission_paid"),
            allowed_formats=("csv", "xlsx"),
        ),
        Resource.USERS: ExportRestrictions(
            max_records=200,
            allowed_fields=("name", "email", "role", "territory_id", "last_login_at", "is_active"),
            allowed_formats=("csv", "xlsx"),
        ),
        Resource.REPORTS: _everything(10000),
        Resource.SETTINGS: ExportRestrictions(
            max_records=100,
            allowed_fields=("basic_settings",),
            sensitive_fields=("api_keys", "secrets"),
            allowed_formats=("json",),
        ),
        Resource.ACTIVITY_LOGS: ExportRestrictions(
            max_records=10000,
            allowed_fields=ALL_FIELDS,
            allowed_formats=("csv", "json"),
        ),
    },
    Role.DIRECTOR: {
        Resource.LEADS: _everything(50000),
        Resource.PIPELINE: _everything(50000),
        Resource.FINANCE: _everything(50000),
        Resource.USERS: _everything(1000),
        Resource.REPORTS: _everything(100000),
        Resource.SETTINGS: _everything(1000),
        Resource.ACTIVITY_LOGS: _everything(100000),
    },
    Role.ADMIN: {
        resource: _everything(-1)
        for resource in (
            Resource.LEADS,
            Resource.PIPELINE,
            Resource.FINANCE,
            Resource.USERS,
            Resource.REPORTS,
            Resource.SETTINGS,
            Resource.ACTIVITY_LOGS,
        )
    },
}


def get_export_restrictions(role: Role, resource: Resource) -> ExportRestrictions | None:
    return EXPORT_RESTRICTIONS.get(role, {}).get(resource)


def can_export(ctx: SecurityContext, request: ExportRequest) -> ExportDecision:
    restrictions = get_export_restrictions(ctx.role, request.resource)
    if restrictions is None:
        return ExportDecision(allowed=False, reason="Resource not accessible for this role")
    if restrictions.max_records == 0:
        return ExportDecision(allowed=False, reason="Export not permitted for this resource")
    export_format = request.format.lower()
    if export_format not in restrictions.allowed_formats:
        return ExportDecision(
            allowed=False,
            reason=(
                f"Format {export_format} not allowed. "
                f"Permitted formats: {', '.join(restrictions.allowed_formats)}"
            ),
        )
    if restrictions.require_approval:
        return ExportDecision(allowed=False, reason="This export requires approval from a manager or admin")
    return ExportDecision(allowed=True, restrictions=restrictions)
