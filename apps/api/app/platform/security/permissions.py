from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    BDR = "BDR"
    TEAM_LEAD = "TEAM_LEAD"
    MANAGER = "MANAGER"
    DIRECTOR = "DIRECTOR"
    ADMIN = "ADMIN"


class Resource(StrEnum):
    LEADS = "LEADS"
    PIPELINE = "PIPELINE"
    FINANCE = "FINANCE"
    USERS = "USERS"
    REPORTS = "REPORTS"
    SETTINGS = "SETTINGS"
    ACTIVITY_LOGS = "ACTIVITY_LOGS"
    DUPLICATES = "DUPLICATES"
    MESSAGING = "MESSAGING"
    TEMPLATES = "TEMPLATES"


class Action(StrEnum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW_ALL = "VIEW_ALL"
    VIEW_TEAM = "VIEW_TEAM"
    EXPORT = "EXPORT"
    MANAGE = "MANAGE"


ROLE_HIERARCHY: dict[Role, int] = {
    Role.BDR: 1,
    Role.TEAM_LEAD: 2,
    Role.MANAGER: 3,
    Role.DIRECTOR: 4,
    Role.ADMIN: 5,
}

Grant = tuple[Resource, Action]

# Filter fragment that never matches a row.
DENY_ALL: dict[str, Any] = {"deny_all": True}


def _grants(resource: Resource, *actions: Action) -> list[Grant]:
    return [(resource, action) for action in actions]


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)

DEFAULT_ROLE_PERMISSIONS: dict[Role, list[Grant]] = {
    Role.ADMIN: [(resource, action) for resource in Resource for action in Action],
    Role.DIRECTOR: [
        *_grants(Resource.LEADS, *_CRUD, Action.VIEW_ALL, Action.EXPORT),
        *_grants(Resource.PIPELINE, *_CRUD, Action.VIEW_ALL, Action.EXPORT),
        *_grants(Resource.FINANCE, Action.READ, Action.VIEW_ALL, Action.EXPORT),
        *_grants(Resource.USERS, Action.READ, Action.VIEW_ALL),
        *_grants(Resource.REPORTS, Action.READ, Action.VIEW_ALL, Action.EXPORT),
        *_grants(Resource.ACTIVITY_LOGS, Action.READ, Action.VIEW_ALL),
        *_grants(Resource.DUPLICATES, Action.READ, Action.VIEW_ALL),
        *_grants(Resource.MESSAGING, Action.READ, Action.CREATE),
    ],
    Role.MANAGER: [
        *_grants(Resource.LEADS, *_CRUD, Action.VIEW_TEAM, Action.EXPORT),
        *_grants(Resource.PIPELINE, *_CRUD, Action.VIEW_TEAM, Action.EXPORT),
        *_grants(Resource.FINANCE, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.USERS, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.REPORTS, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.ACTIVITY_LOGS, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.DUPLICATES, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.MESSAGING, Action.READ, Action.CREATE),
    ],
    Role.TEAM_LEAD: [
        *_grants(Resource.LEADS, Action.CREATE, Action.READ, Action.UPDATE, Action.VIEW_TEAM),
        *_grants(Resource.PIPELINE, Action.CREATE, Action.READ, Action.UPDATE, Action.VIEW_TEAM),
        *_grants(Resource.FINANCE, Action.READ),
        *_grants(Resource.USERS, Action.READ),
        *_grants(Resource.REPORTS, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.ACTIVITY_LOGS, Action.READ, Action.VIEW_TEAM),
        *_grants(Resource.DUPLICATES, Action.READ),
        *_grants(Resource.MESSAGING, Action.READ, Action.CREATE),
    ],
    Role.BDR: [
        *_grants(Resource.LEADS, *_CRUD),
        *_grants(Resource.PIPELINE, *_CRUD),
        *_grants(Resource.FINANCE, Action.READ),
        *_grants(Resource.ACTIVITY_LOGS, Action.CREATE, Action.READ),
        *_grants(Resource.DUPLICATES, Action.READ),
        *_grants(Resource.MESSAGING, Action.READ, Action.CREATE),
    ],
}


@dataclass(slots=True)
class UserWithPermissions:
    """A resolved identity plus its explicit per-user grants."""

    id: str
    role: Role
    territory_id: str | None = None
    managed_territory_ids: list[str] = field(default_factory=list)
    permissions: list[Grant] = field(default_factory=list)


def parse_role(value: str | Role) -> Role:
    try:
        return Role(str(value).upper())
    except ValueError as exc:
        raise ValueError(f"Unknown role '{value}'") from exc


def permission_key(resource: Resource | str, action: Action | str) -> str:
    return f"{Resource(resource).value}:{Action(action).value}"


def role_permission_keys(role: Role) -> list[str]:
    return [permission_key(resource, action) for resource, action in DEFAULT_ROLE_PERMISSIONS.get(role, [])]


def has_permission(user: UserWithPermissions, resource: Resource, action: Action) -> bool:
    if any(granted == (resource, action) for granted in user.permissions):
        return True
    return (resource, action) in DEFAULT_ROLE_PERMISSIONS.get(user.role, [])


def can_view_user_data(
    viewer: UserWithPermissions,
    target_user_id: str,
    target_territory_id: str | None = None,
) -> bool:
    if viewer.id == target_user_id:
        return True
    if viewer.role in (Role.ADMIN, Role.DIRECTOR):
        return True
    if (
        viewer.role == Role.MANAGER
        and target_territory_id is not None
        and target_territory_id in viewer.managed_territory_ids
    ):
        return True
    if viewer.role in (Role.MANAGER, Role.TEAM_LEAD):
        return viewer.territory_id is not None and viewer.territory_id == target_territory_id
    return False


def get_effective_permissions(user: UserWithPermissions) -> list[Grant]:
    """Role defaults followed by explicit grants, first occurrence wins."""

    seen: set[Grant] = set()
    effective: list[Grant] = []
    for grant in [*DEFAULT_ROLE_PERMISSIONS.get(user.role, []), *user.permissions]:
        if grant in seen:
            continue
        seen.add(grant)
        effective.append(grant)
    return effective


def get_data_access_filter(user: UserWithPermissions, resource: Resource) -> dict[str, Any]:
    """Abstract ownership predicate for ``resource``; ``{}`` means unrestricted."""

    if user.role in (Role.ADMIN, Role.DIRECTOR):
        return {}
    if has_permission(user, resource, Action.VIEW_ALL):
        return {}
    if has_permission(user, resource, Action.VIEW_TEAM):
        if user.role == Role.MANAGER and user.managed_territory_ids:
            territory_clause: dict[str, Any] = {"owner_territory_id": {"in": list(user.managed_territory_ids)}}
        else:
            territory_clause = {"owner_territory_id": user.territory_id}
        return {"or": [territory_clause, {"owner_id": user.id}]}
    return {"owner_id": user.id}
