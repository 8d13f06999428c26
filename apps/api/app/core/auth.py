from dataclasses import dataclass

from jose import JWTError, jwt
from starlette.requests import Request

from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    role: str
    name: str | None = None
    territory_id: str | None = None
    managed_territory_ids: list[str] | None = None


def _as_str_list(value: object) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


async def get_current_user(request: Request) -> AuthUser | None:
    """Resolve the caller's identity from a bearer token; ``None`` when there is no usable session."""

    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    if not token:
        return None

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not isinstance(role, str):
        return None

    territory_id = payload.get("territory_id")
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = str(subject)

    return AuthUser(
        sub=str(subject),
        role=role.upper(),
        name=payload.get("name"),
        territory_id=str(territory_id) if territory_id else None,
        managed_territory_ids=_as_str_list(payload.get("managed_territory_ids")),
    )
