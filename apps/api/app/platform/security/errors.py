from __future__ import annotations


class AuthorizationError(Exception):
    """Base authorization error for permission and row-level enforcement failures."""

    status_code = 403
    code = "FORBIDDEN"


class UnauthorizedError(AuthorizationError):
    """Raised when no identity could be resolved for the request."""

    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(AuthorizationError):
    """Raised when an identity lacks a permission or fails a row-level check."""

    def __init__(self, resource: str, action: str, reason: str = "Forbidden") -> None:
        self.resource = resource
        self.action = action
        self.reason = reason
        super().__init__(reason)
