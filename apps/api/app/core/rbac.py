from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.auth import AuthUser, get_current_user
from app.core.database import get_db
from app.platform.security.context import SecurityContext
from app.platform.security.permissions import Action, Resource
from app.platform.security.service import security_service


def require_access(*grants: tuple[Resource, Action], audit_success: bool = True) -> Callable[..., SecurityContext]:
    """Dependency that admits callers holding any one of ``grants``. Denials are always audited."""

    if not grants:
        raise ValueError("require_access needs at least one grant")

    def checker(
        request: Request,
        user: AuthUser | None = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> SecurityContext:
        return security_service.authorize(
            db,
            user,
            grants,
            request_context=getattr(request.state, "context", None),
            audit_success=audit_success,
        )

    return checker
