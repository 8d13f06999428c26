from app.authz.models import Permission, RolePermission, UserPermission

__all__ = [
    "Permission",
    "RolePermission",
    "UserPermission",
]
