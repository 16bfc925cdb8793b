from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from growthcrm.api.responses import success_response
from growthcrm.authz.dependencies import get_optional_principal, get_request_tenant, scope_to_home_tenant
from growthcrm.authz.guard import authorize, denial_response_policy
from growthcrm.authz.pages import required_permission_for_page
from growthcrm.core.database import get_db
from growthcrm.metrics import observe_authz_decision
from growthcrm.platform.security.context import Principal
from growthcrm.tenancy.resolver import ResolvedTenant


router = APIRouter(prefix="/api/authz", tags=["authz"])


@router.get("/pages/{page}")
def check_page_access(
    page: str,
    db: Session = Depends(get_db),
    tenant: ResolvedTenant = Depends(get_request_tenant),
    principal: Principal | None = Depends(get_optional_principal),
) -> JSONResponse:
    tenant = scope_to_home_tenant(db, tenant, principal)
    decision = authorize(principal, tenant, required_permission_for_page(page))
    observe_authz_decision(decision.outcome)
    redirect_to = None if decision.allowed else denial_response_policy(decision, principal, tenant).redirect_to
    return success_response(
        {
            "page": page,
            "allowed": decision.allowed,
            "reason": str(decision.reason) if decision.reason else None,
            "redirect_to": redirect_to,
        }
    )
