from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.platform.security.permissions import Action, Resource, Role


class PermissionCreate(BaseModel):
    resource: Resource
    action: Action
    description: str | None = Field(default=None, max_length=500)


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    resource: str
    action: str
    description: str | None
    created_at: datetime


class AttachRolePermissionRequest(BaseModel):
    permission_id: UUID


class GrantUserPermissionRequest(BaseModel):
    permission_id: UUID
    expires_at: datetime | None = None


class RolePermissionRead(BaseModel):
    role: Role
    permission_id: UUID
    resource: str
    action: str
    created_at: datetime


class UserPermissionRead(BaseModel):
    user_id: str
    permission_id: UUID
    resource: str
    action: str
    granted_by: str | None
    expires_at: datetime | None
    created_at: datetime


class EffectivePermissionsRead(BaseModel):
    user_id: str
    role: Role
    permissions: list[str]
