from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from growthcrm.api.responses import error_response, success_response
from growthcrm.authz.dependencies import get_authenticated_scope, get_request_tenant
from growthcrm.authz.registry import landing_page_for
from growthcrm.core.config import get_settings
from growthcrm.core.database import get_db
from growthcrm.identity.schemas import LoginRequest
from growthcrm.identity.service import AuthService
from growthcrm.platform.security.context import AccessScope
from growthcrm.tenancy.resolver import ResolvedTenant


router = APIRouter(prefix="/api/auth", tags=["auth"])
service = AuthService()


@router.post("/login")
def login(
    request: Request,
    dto: LoginRequest,
    db: Session = Depends(get_db),
    tenant: ResolvedTenant = Depends(get_request_tenant),
) -> JSONResponse:
    try:
        user, token = service.login(db, dto, tenant)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="auth_login_failed",
            message=str(exc.detail),
        )

    settings = get_settings()
    response = success_response(
        {
            "token": token,
            "user": {
                "id": str(user.id),
                "email": user.email,
                "name": user.name,
                "role": user.role,
                "tenant_id": str(user.tenant_id) if user.tenant_id else None,
            },
            "redirect_to": landing_page_for(user.role),
        }
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.app_env.lower() in {"prod", "production"},
    )
    return response


@router.post("/logout")
def logout(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(get_authenticated_scope),
) -> JSONResponse:
    service.logout(db, scope.principal)
    response = success_response({"logged_out": True})
    response.delete_cookie(get_settings().session_cookie_name)
    return response


@router.get("/me")
def me(scope: AccessScope = Depends(get_authenticated_scope)) -> JSONResponse:
    return success_response(service.describe(scope.principal, scope.tenant).model_dump(mode="json"))
