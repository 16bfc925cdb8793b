from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from growthcrm.authz.guard import authorize, denial_response_policy
from growthcrm.core.auth import extract_credential
from growthcrm.core.config import get_settings
from growthcrm.core.context import RequestContext
from growthcrm.core.database import get_db
from growthcrm.identity.resolver import IdentityResolver, SqlIdentityLookup
from growthcrm.metrics import observe_authz_decision
from growthcrm.platform.security.context import AccessScope, Principal
from growthcrm.platform.security.errors import TenantInactive, TenantNotFound, Unauthenticated
from growthcrm.tenancy.resolver import (
    ResolvedTenant,
    SqlTenantStore,
    TenantRecord,
    TenantResolver,
    origin_hint_from_headers,
    tenant_cache,
)


logger = logging.getLogger("growthcrm.authz")


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        correlation_id = getattr(request.state, "correlation_id", None) or ""
        context = RequestContext(
            request_id=correlation_id,
            correlation_id=correlation_id,
            host=request.headers.get("host", ""),
        )
        request.state.context = context
    return context


def _resolver(db: Session) -> TenantResolver:
    return TenantResolver(SqlTenantStore(db), cache=tenant_cache, settings=get_settings())


def _resolve_tenant(request: Request, db: Session, *, allow_inactive: bool) -> ResolvedTenant:
    settings = get_settings()
    try:
        hint = origin_hint_from_headers(request.headers, settings, query=request.query_params)
        return _resolver(db).resolve_tenant(hint, allow_inactive=allow_inactive)
    except TenantNotFound as exc:
        raise TenantNotFound(redirect_to=settings.signup_page) from exc
    except TenantInactive as exc:
        raise TenantInactive(redirect_to=settings.tenant_inactive_page) from exc


def scope_to_home_tenant(
    db: Session,
    tenant: ResolvedTenant,
    principal: Principal | None,
    *,
    allow_inactive: bool = False,
) -> ResolvedTenant:
    """A tenant member on an origin that names no tenant is held to their own tenant."""

    if isinstance(tenant, TenantRecord) or principal is None or principal.tenant_id is None:
        return tenant
    settings = get_settings()
    try:
        return _resolver(db).resolve_home_tenant(principal.tenant_id, allow_inactive=allow_inactive)
    except TenantNotFound as exc:
        raise TenantNotFound(redirect_to=settings.signup_page) from exc
    except TenantInactive as exc:
        raise TenantInactive(redirect_to=settings.tenant_inactive_page) from exc


def get_request_tenant(request: Request, db: Session = Depends(get_db)) -> ResolvedTenant:
    context = get_request_context(request)
    if context.tenant is None:
        context.tenant = _resolve_tenant(request, db, allow_inactive=False)
        if isinstance(context.tenant, TenantRecord):
            context.tenant_subdomain = context.tenant.subdomain
    return context.tenant


def get_billing_tenant(request: Request, db: Session = Depends(get_db)) -> ResolvedTenant:
    """Tenant resolution for billing and reactivation, the only routes open to inactive tenants."""
    tenant = _resolve_tenant(request, db, allow_inactive=True)
    if isinstance(tenant, TenantRecord):
        get_request_context(request).tenant_subdomain = tenant.subdomain
    return tenant


def get_optional_principal(request: Request, db: Session = Depends(get_db)) -> Principal | None:
    context = get_request_context(request)
    if context.principal is not None:
        return context.principal

    credential = extract_credential(request)
    if credential is None:
        return None
    try:
        principal = IdentityResolver(SqlIdentityLookup(db)).resolve_identity(credential)
    except Unauthenticated:
        return None
    context.principal = principal
    return principal


def _decide(permission: str | None, principal: Principal | None, tenant: ResolvedTenant) -> AccessScope:
    decision = authorize(principal, tenant, permission)
    observe_authz_decision(decision.outcome)
    if not decision.allowed or principal is None:
        logger.info(
            "authz.denied",
            extra={
                "reason": str(decision.reason),
                "permission": permission,
                "user_id": principal.user_id if principal else None,
                "role": principal.role if principal else None,
                "subdomain": tenant.subdomain if isinstance(tenant, TenantRecord) else None,
            },
        )
        raise denial_response_policy(decision, principal, tenant)
    return AccessScope(principal=principal, tenant=tenant)


def require_permission(permission: str | None = None) -> Callable[..., AccessScope]:
    def checker(
        request: Request,
        db: Session = Depends(get_db),
        tenant: ResolvedTenant = Depends(get_request_tenant),
        principal: Principal | None = Depends(get_optional_principal),
    ) -> AccessScope:
        home = scope_to_home_tenant(db, tenant, principal)
        if home is not tenant:
            context = get_request_context(request)
            context.tenant = home
            context.tenant_subdomain = home.subdomain if isinstance(home, TenantRecord) else None
        return _decide(permission, principal, home)

    return checker


def require_billing_permission(permission: str) -> Callable[..., AccessScope]:
    def checker(
        db: Session = Depends(get_db),
        tenant: ResolvedTenant = Depends(get_billing_tenant),
        principal: Principal | None = Depends(get_optional_principal),
    ) -> AccessScope:
        return _decide(permission, principal, scope_to_home_tenant(db, tenant, principal, allow_inactive=True))

    return checker


get_authenticated_scope = require_permission(None)
