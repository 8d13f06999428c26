from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.authz.schemas import (
    AttachRolePermissionRequest,
    EffectivePermissionsRead,
    GrantUserPermissionRequest,
    PermissionCreate,
    PermissionRead,
    RolePermissionRead,
    UserPermissionRead,
)
from app.authz.service import authorization_admin_service
from app.core.database import get_db
from app.core.rbac import require_access
from app.platform.security.context import SecurityContext
from app.platform.security.permissions import Action, Resource


admin_router = APIRouter(prefix="/api/admin", tags=["admin.authz"])

_require_user_admin = require_access((Resource.USERS, Action.MANAGE))


@admin_router.post("/permissions", response_model=PermissionRead, status_code=status.HTTP_201_CREATED)
def create_permission(
    dto: PermissionCreate,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> PermissionRead:
    return authorization_admin_service.create_permission(db, dto)


@admin_router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> list[PermissionRead]:
    return authorization_admin_service.list_permissions(db)


@admin_router.post("/roles/{role}/permissions", response_model=RolePermissionRead, status_code=status.HTTP_201_CREATED)
def attach_role_permission(
    role: str,
    dto: AttachRolePermissionRequest,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> RolePermissionRead:
    return authorization_admin_service.attach_permission_to_role(db, role, dto.permission_id)


@admin_router.get("/roles/{role}/permissions", response_model=list[RolePermissionRead])
def list_role_permissions(
    role: str,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> list[RolePermissionRead]:
    return authorization_admin_service.list_role_permissions(db, role)


@admin_router.delete("/roles/{role}/permissions/{permission_id}", status_code=status.HTTP_200_OK)
def detach_role_permission(
    role: str,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> None:
    authorization_admin_service.detach_permission_from_role(db, role, permission_id)


@admin_router.post("/users/{user_id}/permissions", response_model=UserPermissionRead, status_code=status.HTTP_201_CREATED)
def grant_user_permission(
    user_id: str,
    dto: GrantUserPermissionRequest,
    db: Session = Depends(get_db),
    ctx: SecurityContext = Depends(_require_user_admin),
) -> UserPermissionRead:
    return authorization_admin_service.grant_permission_to_user(
        db,
        user_id,
        dto.permission_id,
        granted_by=ctx.user_id,
        expires_at=dto.expires_at,
    )


@admin_router.get("/users/{user_id}/permissions", response_model=list[UserPermissionRead])
def list_user_permissions(
    user_id: str,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> list[UserPermissionRead]:
    return authorization_admin_service.list_user_permissions(db, user_id)


@admin_router.delete("/users/{user_id}/permissions/{permission_id}", status_code=status.HTTP_200_OK)
def revoke_user_permission(
    user_id: str,
    permission_id: uuid.UUID,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> None:
    authorization_admin_service.revoke_permission_from_user(db, user_id, permission_id)


@admin_router.get("/users/{user_id}/effective-permissions", response_model=EffectivePermissionsRead)
def get_effective_permissions(
    user_id: str,
    db: Session = Depends(get_db),
    _ctx: SecurityContext = Depends(_require_user_admin),
) -> EffectivePermissionsRead:
    return authorization_admin_service.get_effective_permissions(db, user_id)
