from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.authz.models import Permission, RolePermission, UserPermission
from app.authz.schemas import (
    EffectivePermissionsRead,
    PermissionCreate,
    PermissionRead,
    RolePermissionRead,
    UserPermissionRead,
)
from app.core.auth import AuthUser
from app.crm.models import User
from app.platform.security.permissions import Role, parse_role
from app.platform.security.service import security_service


def _parse_role_or_404(value: str) -> Role:
    try:
        return parse_role(value)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")


class AuthorizationAdminService:
    def create_permission(self, session: Session, dto: PermissionCreate) -> PermissionRead:
        permission = Permission(resource=dto.resource.value, action=dto.action.value, description=dto.description)
        session.add(permission)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="permission already exists")
        session.refresh(permission)
        return PermissionRead.model_validate(permission)

    def list_permissions(self, session: Session) -> list[PermissionRead]:
        rows = session.scalars(select(Permission).order_by(Permission.resource.asc(), Permission.action.asc())).all()
        return [PermissionRead.model_validate(row) for row in rows]

    def _get_permission(self, session: Session, permission_id: uuid.UUID) -> Permission:
        permission = session.scalar(select(Permission).where(Permission.id == permission_id))
        if permission is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="permission not found")
        return permission

    def attach_permission_to_role(
        self,
        session: Session,
        role_name: str,
        permission_id: uuid.UUID,
    ) -> RolePermissionRead:
        role = _parse_role_or_404(role_name)
        permission = self._get_permission(session, permission_id)

        mapping = session.scalar(
            select(RolePermission).where(
                and_(RolePermission.role == role.value, RolePermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            mapping = RolePermission(role=role.value, permission_id=permission_id)
            session.add(mapping)
            session.commit()
            session.refresh(mapping)

        return RolePermissionRead(
            role=role,
            permission_id=permission.id,
            resource=permission.resource,
            action=permission.action,
            created_at=mapping.created_at,
        )

    def list_role_permissions(self, session: Session, role_name: str) -> list[RolePermissionRead]:
        role = _parse_role_or_404(role_name)
        rows = session.execute(
            select(RolePermission, Permission)
            .join(Permission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role == role.value)
            .order_by(Permission.resource.asc(), Permission.action.asc())
        ).all()
        return [
            RolePermissionRead(
                role=role,
                permission_id=permission.id,
                resource=permission.resource,
                action=permission.action,
                created_at=mapping.created_at,
            )
            for mapping, permission in rows
        ]

    def detach_permission_from_role(self, session: Session, role_name: str, permission_id: uuid.UUID) -> None:
        role = _parse_role_or_404(role_name)
        mapping = session.scalar(
            select(RolePermission).where(
                and_(RolePermission.role == role.value, RolePermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role-permission mapping not found")

        session.delete(mapping)
        session.commit()

    def grant_permission_to_user(
        self,
        session: Session,
        user_id: str,
        permission_id: uuid.UUID,
        *,
        granted_by: str,
        expires_at: datetime | None = None,
    ) -> UserPermissionRead:
        if session.get(User, user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        permission = self._get_permission(session, permission_id)

        mapping = session.scalar(
            select(UserPermission).where(
                and_(UserPermission.user_id == user_id, UserPermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            mapping = UserPermission(user_id=user_id, permission_id=permission_id)
            session.add(mapping)
        mapping.granted_by = granted_by
        mapping.expires_at = expires_at
        session.commit()
        session.refresh(mapping)
        return self._user_permission_read(mapping, permission)

    def list_user_permissions(self, session: Session, user_id: str) -> list[UserPermissionRead]:
        rows = session.execute(
            select(UserPermission, Permission)
            .join(Permission, UserPermission.permission_id == Permission.id)
            .where(UserPermission.user_id == user_id)
            .order_by(Permission.resource.asc(), Permission.action.asc())
        ).all()
        return [self._user_permission_read(mapping, permission) for mapping, permission in rows]

    def revoke_permission_from_user(self, session: Session, user_id: str, permission_id: uuid.UUID) -> None:
        mapping = session.scalar(
            select(UserPermission).where(
                and_(UserPermission.user_id == user_id, UserPermission.permission_id == permission_id)
            )
        )
        if mapping is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user-permission mapping not found")

        session.delete(mapping)
        session.commit()

    def get_effective_permissions(self, session: Session, user_id: str) -> EffectivePermissionsRead:
        user = session.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
        ctx = security_service.get_security_context(
            session,
            AuthUser(sub=user.id, role=user.role, name=user.name, territory_id=user.territory_id),
        )
        if ctx is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="user has an unknown role")
        return EffectivePermissionsRead(user_id=user.id, role=ctx.role, permissions=ctx.permissions)

    @staticmethod
    def _user_permission_read(mapping: UserPermission, permission: Permission) -> UserPermissionRead:
        return UserPermissionRead(
            user_id=mapping.user_id,
            permission_id=permission.id,
            resource=permission.resource,
            action=permission.action,
            granted_by=mapping.granted_by,
            expires_at=mapping.expires_at,
            created_at=mapping.created_at,
        )


authorization_admin_service = AuthorizationAdminService()
