from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from growthcrm.authz.api import router as authz_router
from growthcrm.authz.dependencies import require_permission
from growthcrm.automation.api import router as automation_router
from growthcrm.core.config import get_settings
from growthcrm.crm.api import discovery_calls_router, podcast_interviews_router, sales_calls_router
from growthcrm.identity.api import router as auth_router
from growthcrm.metrics import generate_metrics_payload, metrics_content_type
from growthcrm.platform.security.context import AccessScope
from growthcrm.tenancy.api import billing_router, router as tenancy_router
from growthcrm.users.api import advisor_router, invitations_router, users_router

router = APIRouter()
router.include_router(tenancy_router)
router.include_router(billing_router)
router.include_router(auth_router)
router.include_router(authz_router)
router.include_router(invitations_router)
router.include_router(users_router)
router.include_router(advisor_router)
router.include_router(podcast_interviews_router)
router.include_router(discovery_calls_router)
router.include_router(sales_calls_router)
router.include_router(automation_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


def _metrics_enabled() -> None:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")


@router.get("/metrics", tags=["system"], dependencies=[Depends(_metrics_enabled)])
def metrics(scope: AccessScope = Depends(require_permission("system.metrics"))) -> Response:
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
