from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.authz.models import Permission, RolePermission, UserPermission
from app.core.auth import AuthUser
from app.core.context import RequestContext
from app.crm.models import Territory, User
from app.platform.security.context import SecurityContext
from app.platform.security.errors import ForbiddenError, UnauthorizedError
from app.platform.security.permissions import (
    DENY_ALL,
    Action,
    Resource,
    Role,
    can_view_user_data,
    get_data_access_filter,
    parse_role,
    permission_key,
    role_permission_keys,
)
from app.platform.security.rls import emit_access_denied, is_admin_bypass
from app.services.audit import write_audit_log


logger = logging.getLogger("app.security")

T = TypeVar("T")

_OWNED_RESOURCES = (Resource.LEADS, Resource.PIPELINE, Resource.ACTIVITY_LOGS, Resource.DUPLICATES)
_PERMISSION_ONLY_RESOURCES = (Resource.MESSAGING, Resource.TEMPLATES)
_USER_ADMIN_ACTIONS = (Action.CREATE, Action.DELETE, Action.MANAGE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _owner_of(data: Mapping[str, Any]) -> tuple[str | None, str | None]:
    owner = data.get("owner") or data.get("bdr") or {}
    owner_id = data.get("owner_id") or data.get("bdr_id") or owner.get("id")
    territory_id = data.get("owner_territory_id") or owner.get("territory_id")
    return (
        str(owner_id) if owner_id is not None else None,
        str(territory_id) if territory_id is not None else None,
    )


class SecurityService:
    def get_security_context(self, session: Session, user: AuthUser | None) -> SecurityContext | None:
        """Resolve the effective permission set for ``user``. Store errors propagate."""

        if user is None:
            return None
        try:
            role = parse_role(user.role)
        except ValueError:
            logger.warning("security.unknown_role", extra={"user_id": user.sub, "reason": user.role})
            return None

        territory_id = user.territory_id
        if territory_id is None:
            territory_id = session.scalar(select(User.territory_id).where(User.id == user.sub))

        now = utcnow()
        user_grants = session.scalars(
            select(Permission)
            .join(UserPermission, UserPermission.permission_id == Permission.id)
            .where(
                UserPermission.user_id == user.sub,
                or_(UserPermission.expires_at.is_(None), UserPermission.expires_at > now),
            )
        ).all()
        role_grants = session.scalars(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role == role.value)
        ).all()

        permissions = list(
            dict.fromkeys(
                [
                    *role_permission_keys(role),
                    *(grant.key for grant in role_grants),
                    *(grant.key for grant in user_grants),
                ]
            )
        )

        managed: list[str] = []
        if role == Role.MANAGER:
            if user.managed_territory_ids is not None:
                managed = list(user.managed_territory_ids)
            else:
                managed = list(session.scalars(select(Territory.id).where(Territory.manager_id == user.sub)))

        return SecurityContext(
            user_id=user.sub,
            role=role,
            territory_id=territory_id,
            managed_territory_ids=managed,
            permissions=permissions,
        )

    def can_access_resource(
        self,
        ctx: SecurityContext,
        resource: Resource,
        action: Action,
        data: Mapping[str, Any] | None = None,
    ) -> bool:
        if not ctx.has(resource, action):
            return False
        if is_admin_bypass(ctx):
            return True
        # Membership checks for these live with the caller.
        if resource in _PERMISSION_ONLY_RESOURCES:
            return True
        if resource == Resource.SETTINGS:
            return False

        if resource == Resource.FINANCE:
            if ctx.role == Role.TEAM_LEAD:
                return False
            if data is None:
                return True
            owner_id, owner_territory_id = _owner_of(data)
            if ctx.role == Role.BDR:
                return owner_id == ctx.user_id
            if ctx.role == Role.MANAGER:
                return owner_id == ctx.user_id or owner_territory_id in ctx.managed_territory_ids
            return ctx.role == Role.DIRECTOR

        if resource == Resource.REPORTS:
            scope = (data or {}).get("scope", "self")
            if ctx.role == Role.BDR:
                return scope == "self"
            if ctx.role == Role.TEAM_LEAD:
                return scope in ("self", "team")
            return ctx.role in (Role.MANAGER, Role.DIRECTOR)

        if resource == Resource.USERS:
            if action in _USER_ADMIN_ACTIONS and ctx.role not in (Role.MANAGER, Role.DIRECTOR):
                return False
            if data is None:
                return True
            target_id = data.get("id")
            target_territory_id = data.get("territory_id")
            return can_view_user_data(
                ctx.as_user(),
                str(target_id) if target_id is not None else "",
                str(target_territory_id) if target_territory_id is not None else None,
            )

        if resource in _OWNED_RESOURCES:
            if data is None:
                return True
            owner_id, owner_territory_id = _owner_of(data)
            if ctx.role == Role.BDR:
                return owner_id == ctx.user_id
            if ctx.role == Role.TEAM_LEAD:
                return owner_id == ctx.user_id or (
                    ctx.territory_id is not None and owner_territory_id == ctx.territory_id
                )
            if ctx.role == Role.MANAGER:
                return owner_id == ctx.user_id or owner_territory_id in ctx.managed_territory_ids
            return ctx.role == Role.DIRECTOR

        return False

    def build_secure_query(
        self,
        base_query: Mapping[str, Any],
        ctx: SecurityContext,
        resource: Resource,
    ) -> dict[str, Any]:
        """Return ``base_query`` with the caller's ownership predicate AND-ed into its ``where``."""

        if is_admin_bypass(ctx):
            return dict(base_query)

        if resource == Resource.FINANCE and ctx.role == Role.TEAM_LEAD:
            predicate: dict[str, Any] = dict(DENY_ALL)
        elif resource == Resource.SETTINGS:
            predicate = dict(DENY_ALL)
        else:
            predicate = get_data_access_filter(ctx.as_user(), resource)

        query = dict(base_query)
        if not predicate:
            return query
        base_where = query.get("where")
        query["where"] = {"and": [base_where, predicate]} if base_where else predicate
        return query

    def log_action(
        self,
        session: Session,
        *,
        user_id: str | None,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
        error_msg: str | None = None,
        request_context: RequestContext | None = None,
    ) -> None:
        write_audit_log(
            session,
            request_context,
            user_id,
            action,
            resource,
            resource_id,
            details,
            success=success,
            error_msg=error_msg,
        )

    def authorize(
        self,
        session: Session,
        user: AuthUser | None,
        grants: Iterable[tuple[Resource, Action]],
        *,
        data: Mapping[str, Any] | None = None,
        request_context: RequestContext | None = None,
        audit_success: bool = True,
    ) -> SecurityContext:
        """Resolve the caller and require at least one of ``grants``, auditing the outcome."""

        candidates = list(grants)
        resource, action = candidates[0]
        ctx = self.get_security_context(session, user)
        if ctx is None:
            emit_access_denied(ctx=None, resource=resource, action=action, reason="unauthenticated")
            self.log_action(
                session,
                user_id=user.sub if user is not None else None,
                action=action,
                resource=resource,
                success=False,
                error_msg="Unauthorized",
                request_context=request_context,
            )
            raise UnauthorizedError()

        held = [(res, act) for res, act in candidates if ctx.has(res, act)]
        if not held:
            emit_access_denied(ctx=ctx, resource=resource, action=action, reason="missing_permission")
            self.log_action(
                session,
                user_id=ctx.user_id,
                action=action,
                resource=resource,
                success=False,
                error_msg=f"Missing permission: {permission_key(resource, action)}",
                request_context=request_context,
            )
            raise ForbiddenError(resource, action, f"Missing permission: {permission_key(resource, action)}")

        if not any(self.can_access_resource(ctx, res, act, data) for res, act in held):
            resource, action = held[0]
            emit_access_denied(ctx=ctx, resource=resource, action=action, reason="row_level")
            self.log_action(
                session,
                user_id=ctx.user_id,
                action=action,
                resource=resource,
                success=False,
                error_msg="Row-level access denied",
                request_context=request_context,
            )
            raise ForbiddenError(resource, action, "Row-level access denied")

        if audit_success:
            resource, action = held[0]
            self.log_action(
                session,
                user_id=ctx.user_id,
                action=action,
                resource=resource,
                request_context=request_context,
            )
        if request_context is not None:
            ctx.correlation_id = request_context.correlation_id or None
        return ctx

    def with_security(
        self,
        session: Session,
        user: AuthUser | None,
        resource: Resource,
        action: Action,
        operation: Callable[[SecurityContext], T],
        *,
        data: Mapping[str, Any] | None = None,
        request_context: RequestContext | None = None,
    ) -> T:
        ctx = self.authorize(
            session,
            user,
            [(resource, action)],
            data=data,
            request_context=request_context,
            audit_success=False,
        )
        try:
            result = operation(ctx)
        except Exception as exc:
            self.log_action(
                session,
                user_id=ctx.user_id,
                action=action,
                resource=resource,
                success=False,
                error_msg=str(exc)[:500] or exc.__class__.__name__,
                request_context=request_context,
            )
            raise
        self.log_action(
            session,
            user_id=ctx.user_id,
            action=action,
            resource=resource,
            request_context=request_context,
        )
        return result


security_service = SecurityService()
