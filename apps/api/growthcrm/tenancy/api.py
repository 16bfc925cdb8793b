from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from growthcrm.api.responses import error_response, success_response
from growthcrm.authz.dependencies import require_billing_permission
from growthcrm.core.auth import issue_session_token
from growthcrm.core.database import get_db
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.errors import AccessError
from growthcrm.tenancy.resolver import SqlTenantStore, TenantRecord, TenantResolver, tenant_cache
from growthcrm.tenancy.schemas import TenantSignupRequest, TenantStatusChangeRequest
from growthcrm.tenancy.service import TenantService


router = APIRouter(prefix="/api", tags=["tenancy"])
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])
service = TenantService()


@router.get("/tenant")
def get_tenant(
    request: Request,
    subdomain: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> JSONResponse:
    if not subdomain or not subdomain.strip():
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="tenant_subdomain_required",
            message="Subdomain is required",
        )
    try:
        tenant = TenantResolver(SqlTenantStore(db), cache=tenant_cache).resolve_tenant(subdomain)
    except AccessError as exc:
        return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message)
    if not isinstance(tenant, TenantRecord):
        return success_response(None)
    return success_response(tenant.to_public())


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
def signup_tenant(
    request: Request,
    dto: TenantSignupRequest,
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        tenant, owner = service.signup(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="tenant_signup_failed",
            message=str(exc.detail),
        )
    token = issue_session_token(
        user_id=str(owner.id),
        tenant_id=str(tenant.id),
        session_version=owner.session_version,
    )
    return success_response(
        {
            "tenant": tenant.model_dump(mode="json"),
            "user": {"id": str(owner.id), "email": owner.email, "role": owner.role},
            "token": token,
        },
        status_code=status.HTTP_201_CREATED,
    )


@billing_router.post("/tenant/status")
def change_tenant_status(
    request: Request,
    dto: TenantStatusChangeRequest,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_billing_permission("billing.manage")),
) -> JSONResponse:
    try:
        return success_response(service.change_subscription_status(db, scope, dto).model_dump(mode="json"))
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="tenant_status_change_failed",
            message=str(exc.detail),
        )


@billing_router.post("/tenant/reactivate")
def reactivate_tenant(
    request: Request,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_billing_permission("billing.manage")),
) -> JSONResponse:
    try:
        return success_response(service.reactivate(db, scope).model_dump(mode="json"))
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="tenant_reactivate_failed",
            message=str(exc.detail),
        )
