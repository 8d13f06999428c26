from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from app.authz.api import admin_router as authz_admin_router
from app.core.auth import AuthUser, get_current_user
from app.core.config import get_settings
from app.core.rbac import require_access
from app.crm.api import export_router, router as crm_router
from app.duplicates.api import admin_router as duplicates_admin_router, router as duplicates_router
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.security.context import SecurityContext
from app.platform.security.errors import UnauthorizedError
from app.platform.security.permissions import Action, Resource

router = APIRouter()
router.include_router(duplicates_router)
router.include_router(duplicates_admin_router)
router.include_router(crm_router)
router.include_router(export_router)
router.include_router(authz_admin_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser | None = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    if user is None:
        raise UnauthorizedError()
    return {
        "sub": user.sub,
        "role": user.role,
        "name": user.name,
        "territory_id": user.territory_id,
        "managed_territory_ids": user.managed_territory_ids or [],
    }


def _metrics_enabled() -> None:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")


@router.get("/metrics", tags=["system"], dependencies=[Depends(_metrics_enabled)])
def metrics(_ctx: SecurityContext = Depends(require_access((Resource.USERS, Action.MANAGE)))) -> Response:
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
