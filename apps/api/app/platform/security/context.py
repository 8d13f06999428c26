from __future__ import annotations

from dataclasses import dataclass, field

from app.platform.security.permissions import Action, Resource, Role, UserWithPermissions, permission_key


@dataclass(slots=True)
class SecurityContext:
    """Effective permission set for one authorization call. Never cached across requests."""

    user_id: str
    role: Role
    territory_id: str | None = None
    managed_territory_ids: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    correlation_id: str | None = None

    def has(self, resource: Resource | str, action: Action | str) -> bool:
        return permission_key(resource, action) in self.permissions

    def as_user(self) -> UserWithPermissions:
        grants = []
        for entry in self.permissions:
            resource, _, action = entry.partition(":")
            if resource in Resource.__members__ and action in Action.__members__:
                grants.append((Resource(resource), Action(action)))
        return UserWithPermissions(
            id=self.user_id,
            role=self.role,
            territory_id=self.territory_id,
            managed_territory_ids=list(self.managed_territory_ids),
            permissions=grants,
        )
