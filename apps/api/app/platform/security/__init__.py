from app.platform.security.context import SecurityContext
from app.platform.security.errors import AuthorizationError, ForbiddenError, UnauthorizedError
from app.platform.security.exports import (
    EXPORT_RESTRICTIONS,
    ExportDecision,
    ExportRequest,
    ExportRestrictions,
    can_export,
)
from app.platform.security.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_HIERARCHY,
    Action,
    Resource,
    Role,
    UserWithPermissions,
    can_view_user_data,
    get_data_access_filter,
    get_effective_permissions,
    has_permission,
)
from app.platform.security.rls import apply_access_filter
from app.platform.security.service import SecurityService, security_service

__all__ = [
    "SecurityContext",
    "AuthorizationError",
    "ForbiddenError",
    "UnauthorizedError",
    "EXPORT_RESTRICTIONS",
    "ExportDecision",
    "ExportRequest",
    "ExportRestrictions",
    "can_export",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROLE_HIERARCHY",
    "Action",
    "Resource",
    "Role",
    "UserWithPermissions",
    "can_view_user_data",
    "get_data_access_filter",
    "get_effective_permissions",
    "has_permission",
    "apply_access_filter",
    "SecurityService",
    "security_service",
]
