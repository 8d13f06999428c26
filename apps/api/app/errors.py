from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.context import get_correlation_id
from app.platform.security.errors import AuthorizationError, ForbiddenError


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def _status_code_name(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).name
    except ValueError:
        return f"HTTP_{status_code}"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = (
        get_correlation_id()
        or getattr(request.state, "correlation_id", None)
        or getattr(getattr(request.state, "context", None), "request_id", None)
        or str(uuid.uuid4())
    )
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    response = JSONResponse(status_code=status_code, content=asdict(payload))
    response.headers["X-Correlation-Id"] = correlation_id
    return response


async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    details = None
    if isinstance(exc, ForbiddenError):
        details = {"resource": str(exc.resource), "action": str(exc.action)}
    return error_response(request, status_code=exc.status_code, code=exc.code, message=str(exc), details=details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = error_response(
        request,
        status_code=exc.status_code,
        code=_status_code_name(exc.status_code),
        message=str(exc.detail),
        details=exc.detail if not isinstance(exc.detail, str) else None,
    )
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthorizationError, authorization_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
