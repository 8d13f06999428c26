from app.models.audit import AuditLog
from app.crm.models import ActivityLog, FinanceEntry, Lead, PipelineItem, Territory, User
from app.authz.models import Permission, RolePermission, UserPermission
from app.duplicates.models import DuplicateAuditLog, DuplicateWarning, PotentialDuplicate

__all__ = [
	"ActivityLog",
	"AuditLog",
	"DuplicateAuditLog",
	"DuplicateWarning",
	"FinanceEntry",
	"Lead",
	"Permission",
	"PipelineItem",
	"PotentialDuplicate",
	"RolePermission",
	"Territory",
	"User",
	"UserPermission",
]
