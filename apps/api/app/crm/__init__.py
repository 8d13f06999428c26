from app.crm.models import ActivityLog, FinanceEntry, Lead, PipelineItem, Territory, User

__all__ = ["ActivityLog", "FinanceEntry", "Lead", "PipelineItem", "Territory", "User"]
