from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, false, or_, select, true
from sqlalchemy.sql import ColumnElement, Select

from app.crm.models import User
from app.metrics import observe_security_denial
from app.platform.security.context import SecurityContext


logger = logging.getLogger("app.security")

_OWNER_ALIASES = ("bdr_id", "owner_id", "user_id")
_OPERATORS = ("in", "gte", "lte", "gt", "lt", "eq", "ne")


def is_admin_bypass(ctx: SecurityContext) -> bool:
    return ctx.role == "ADMIN"


def apply_access_filter(stmt: Select[Any], model: type, where: dict[str, Any] | None) -> Select[Any]:
    """Compile an abstract access predicate onto ``stmt`` for ``model``'s table."""

    if not where:
        return stmt
    return stmt.where(compile_predicate(model, where))


def compile_predicate(model: type, where: dict[str, Any]) -> ColumnElement[bool]:
    clauses: list[ColumnElement[bool]] = []
    for key, value in where.items():
        if key == "deny_all":
            clauses.append(false() if value else true())
        elif key == "and":
            clauses.append(and_(true(), *[compile_predicate(model, item) for item in value]))
        elif key == "or":
            parts = [compile_predicate(model, item) for item in value]
            clauses.append(or_(*parts) if parts else false())
        elif key == "owner_id":
            clauses.append(_owner_column(model) == value)
        elif key == "owner_territory_id":
            clauses.append(_owner_territory_clause(model, value))
        else:
            clauses.append(_column_clause(model, key, value))
    if len(clauses) == 1:
        return clauses[0]
    return and_(*clauses)


def _owner_column(model: type) -> Any:
    if model is User:
        return User.id
    for name in _OWNER_ALIASES:
        column = getattr(model, name, None)
        if column is not None:
            return column
    raise ValueError(f"{model.__name__} has no owner column")


def _owner_territory_clause(model: type, value: Any) -> ColumnElement[bool]:
    if model is User:
        return _column_clause(User, "territory_id", value)
    if isinstance(value, dict):
        territory_ids = [item for item in value.get("in", []) if item]
        if not territory_ids:
            return false()
        member_ids = select(User.id).where(User.territory_id.in_(territory_ids))
    else:
        if value is None:
            return false()
        member_ids = select(User.id).where(User.territory_id == value)
    return _owner_column(model).in_(member_ids)


def _column_clause(model: type, name: str, value: Any) -> ColumnElement[bool]:
    column = getattr(model, name, None)
    if column is None:
        raise ValueError(f"{model.__name__} has no column '{name}'")
    if not isinstance(value, dict):
        return column.is_(None) if value is None else column == value

    clauses: list[ColumnElement[bool]] = []
    for operator, operand in value.items():
        if operator not in _OPERATORS:
            raise ValueError(f"Unsupported operator '{operator}'")
        if operator == "in":
            clauses.append(column.in_(list(operand)))
        elif operator == "gte":
            clauses.append(column >= operand)
        elif operator == "lte":
            clauses.append(column <= operand)
        elif operator == "gt":
            clauses.append(column > operand)
        elif operator == "lt":
            clauses.append(column < operand)
        elif operator == "eq":
            clauses.append(column == operand)
        else:
            clauses.append(column != operand)
    return and_(true(), *clauses)


def emit_access_denied(*, ctx: SecurityContext | None, resource: str, action: str, reason: str) -> None:
    observe_security_denial(resource=resource, reason=reason)
    logger.warning(
        "security.denied",
        extra={
            "user_id": ctx.user_id if ctx is not None else None,
            "resource": resource,
            "action": action,
            "reason": reason,
        },
    )
