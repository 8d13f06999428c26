from app.duplicates.models import (
    DuplicateAction,
    DuplicateAuditLog,
    DuplicateType,
    DuplicateWarning,
    PotentialDuplicate,
    UserDecision,
    WarningSeverity,
)

__all__ = [
    "DuplicateAction",
    "DuplicateAuditLog",
    "DuplicateType",
    "DuplicateWarning",
    "PotentialDuplicate",
    "UserDecision",
    "WarningSeverity",
]
