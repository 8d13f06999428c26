from app.platform.security import (
    AuthorizationError,
    ForbiddenError,
    SecurityContext,
    UnauthorizedError,
    security_service,
)

__all__ = [
    "AuthorizationError",
    "ForbiddenError",
    "SecurityContext",
    "UnauthorizedError",
    "security_service",
]
