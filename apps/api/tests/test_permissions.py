from __future__ import annotations

import pytest

from app.platform.security.context import SecurityContext
from app.platform.security.exports import ExportRequest, can_export, get_export_restrictions
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
    parse_role,
    role_permission_keys,
)
from app.platform.security.service import security_service


def _ctx(role: Role, user_id: str = "u-1") -> SecurityContext:
    return SecurityContext(user_id=user_id, role=role, permissions=role_permission_keys(role))


def test_role_hierarchy_is_ordered() -> None:
    ordered = sorted(ROLE_HIERARCHY, key=ROLE_HIERARCHY.get)
    assert ordered == [Role.BDR, Role.TEAM_LEAD, Role.MANAGER, Role.DIRECTOR, Role.ADMIN]


def test_parse_role_is_case_insensitive_and_rejects_unknown() -> None:
    assert parse_role("manager") == Role.MANAGER
    with pytest.raises(ValueError):
        parse_role("intern")


def test_report_export_limited_to_admin_and_director() -> None:
    holders = {role for role, grants in DEFAULT_ROLE_PERMISSIONS.items() if (Resource.REPORTS, Action.EXPORT) in grants}
    assert holders == {Role.ADMIN, Role.DIRECTOR}


@pytest.mark.parametrize("role", [Role.BDR, Role.TEAM_LEAD, Role.MANAGER, Role.DIRECTOR])
@pytest.mark.parametrize("resource", list(Resource))
def test_admin_grants_cover_every_lower_role(role: Role, resource: Resource) -> None:
    lower = {action for granted, action in DEFAULT_ROLE_PERMISSIONS[role] if granted == resource}
    admin = {action for granted, action in DEFAULT_ROLE_PERMISSIONS[Role.ADMIN] if granted == resource}

    assert lower <= admin


def test_admin_holds_every_resource_action_pair() -> None:
    admin = set(DEFAULT_ROLE_PERMISSIONS[Role.ADMIN])

    assert admin == {(resource, action) for resource in Resource for action in Action}
    assert (Resource.ACTIVITY_LOGS, Action.CREATE) in admin


def test_admin_is_not_refused_what_a_bdr_may_do() -> None:
    for resource, action in DEFAULT_ROLE_PERMISSIONS[Role.BDR]:
        assert security_service.can_access_resource(_ctx(Role.ADMIN, "root"), resource, action)

    assert security_service.can_access_resource(_ctx(Role.BDR, "b"), Resource.ACTIVITY_LOGS, Action.CREATE)


def test_role_defaults_for_lower_roles() -> None:
    bdr = UserWithPermissions(id="b", role=Role.BDR)
    team_lead = UserWithPermissions(id="t", role=Role.TEAM_LEAD)

    assert has_permission(bdr, Resource.LEADS, Action.CREATE)
    assert not has_permission(bdr, Resource.LEADS, Action.EXPORT)
    assert not has_permission(bdr, Resource.USERS, Action.READ)
    assert has_permission(team_lead, Resource.FINANCE, Action.READ)
    assert not has_permission(team_lead, Resource.FINANCE, Action.VIEW_TEAM)
    assert not has_permission(team_lead, Resource.DUPLICATES, Action.MANAGE)


def test_explicit_grant_extends_role_defaults() -> None:
    user = UserWithPermissions(id="b", role=Role.BDR, permissions=[(Resource.LEADS, Action.EXPORT)])

    assert has_permission(user, Resource.LEADS, Action.EXPORT)
    effective = get_effective_permissions(user)
    assert effective[: len(DEFAULT_ROLE_PERMISSIONS[Role.BDR])] == DEFAULT_ROLE_PERMISSIONS[Role.BDR]
    assert effective[-1] == (Resource.LEADS, Action.EXPORT)


def test_effective_permissions_are_deduplicated() -> None:
    user = UserWithPermissions(id="b", role=Role.BDR, permissions=[(Resource.LEADS, Action.READ)])

    effective = get_effective_permissions(user)
    assert effective.count((Resource.LEADS, Action.READ)) == 1
    assert len(effective) == len(DEFAULT_ROLE_PERMISSIONS[Role.BDR])


def test_can_view_user_data_rules() -> None:
    bdr = UserWithPermissions(id="b", role=Role.BDR, territory_id="north")
    manager = UserWithPermissions(id="m", role=Role.MANAGER, territory_id="hq", managed_territory_ids=["north"])
    team_lead = UserWithPermissions(id="t", role=Role.TEAM_LEAD, territory_id="north")
    director = UserWithPermissions(id="d", role=Role.DIRECTOR)

    assert can_view_user_data(bdr, "b")
    assert not can_view_user_data(bdr, "other", "north")
    assert can_view_user_data(manager, "x", "north")
    assert can_view_user_data(manager, "y", "hq")
    assert not can_view_user_data(manager, "z", "south")
    assert can_view_user_data(team_lead, "x", "north")
    assert not can_view_user_data(team_lead, "x", None)
    assert can_view_user_data(director, "anyone", "south")


def test_data_access_filters_by_role() -> None:
    bdr = UserWithPermissions(id="b", role=Role.BDR, territory_id="north")
    team_lead = UserWithPermissions(id="t", role=Role.TEAM_LEAD, territory_id="north")
    manager = UserWithPermissions(id="m", role=Role.MANAGER, managed_territory_ids=["north", "east"])
    director = UserWithPermissions(id="d", role=Role.DIRECTOR)

    assert get_data_access_filter(bdr, Resource.LEADS) == {"owner_id": "b"}
    assert get_data_access_filter(team_lead, Resource.LEADS) == {
        "or": [{"owner_territory_id": "north"}, {"owner_id": "t"}]
    }
    assert get_data_access_filter(manager, Resource.PIPELINE) == {
        "or": [{"owner_territory_id": {"in": ["north", "east"]}}, {"owner_id": "m"}]
    }
    assert get_data_access_filter(director, Resource.FINANCE) == {}


def test_view_all_grant_lifts_the_filter() -> None:
    bdr = UserWithPermissions(id="b", role=Role.BDR, permissions=[(Resource.LEADS, Action.VIEW_ALL)])

    assert get_data_access_filter(bdr, Resource.LEADS) == {}
    assert get_data_access_filter(bdr, Resource.PIPELINE) == {"owner_id": "b"}


def test_export_restriction_table_lookups() -> None:
    assert get_export_restrictions(Role.ADMIN, Resource.LEADS).unlimited
    assert get_export_restrictions(Role.DIRECTOR, Resource.FINANCE).all_fields
    assert get_export_restrictions(Role.BDR, Resource.LEADS).max_records == 500
    assert get_export_restrictions(Role.ADMIN, Resource.DUPLICATES) is None


def test_can_export_outcomes() -> None:
    allowed = can_export(_ctx(Role.MANAGER), ExportRequest(resource=Resource.LEADS, format="xlsx"))
    assert allowed.allowed
    assert allowed.restrictions is not None and allowed.restrictions.max_records == 10000

    forbidden = can_export(_ctx(Role.TEAM_LEAD), ExportRequest(resource=Resource.FINANCE))
    assert not forbidden.allowed
    assert forbidden.reason == "Export not permitted for this resource"

    wrong_format = can_export(_ctx(Role.BDR), ExportRequest(resource=Resource.LEADS, format="JSON"))
    assert not wrong_format.allowed
    assert wrong_format.reason == "Format json not allowed. Permitted formats: csv"

    missing = can_export(_ctx(Role.ADMIN), ExportRequest(resource=Resource.MESSAGING))
    assert not missing.allowed
    assert missing.reason == "Resource not accessible for this role"
