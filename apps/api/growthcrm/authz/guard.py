"""Authorization decisions.

``authorize`` is a pure function of principal, tenant and required permission. Everything
with side effects (metrics, logging, redirects, session invalidation) lives with the
callers in ``growthcrm.authz.dependencies``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlencode

from growthcrm.authz.registry import landing_page_for
from growthcrm.core.config import Settings, get_settings
from growthcrm.platform.security.context import Principal
from growthcrm.platform.security.errors import (
    AccessError,
    InsufficientPermission,
    TenantMismatch,
    Unauthenticated,
)
from growthcrm.tenancy.records import ResolvedTenant, TenantRecord


class DenyReason(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    TENANT_MISMATCH = "tenant_mismatch"
    INSUFFICIENT_PERMISSION = "insufficient_permission"


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None

    @property
    def outcome(self) -> str:
        return "allow" if self.allowed else f"deny_{self.reason}"


ALLOW = Decision(allowed=True)


def deny(reason: DenyReason) -> Decision:
    return Decision(allowed=False, reason=reason)


def authorize(
    principal: Principal | None,
    tenant: ResolvedTenant | None,
    required_permission: str | None,
) -> Decision:
    if principal is None:
        return deny(DenyReason.UNAUTHENTICATED)

    if isinstance(tenant, TenantRecord) and principal.tenant_id is not None and principal.tenant_id != tenant.id:
        return deny(DenyReason.TENANT_MISMATCH)

    if not required_permission:
        return ALLOW

    if principal.permission_set.allows(required_permission):
        return ALLOW
    return deny(DenyReason.INSUFFICIENT_PERMISSION)


def login_page_for(tenant: ResolvedTenant | None, settings: Settings | None = None) -> str:
    resolved_settings = settings or get_settings()
    if isinstance(tenant, TenantRecord):
        return f"{resolved_settings.login_page}?{urlencode({'tenant': tenant.subdomain})}"
    return resolved_settings.login_page


def denial_response_policy(
    decision: Decision,
    principal: Principal | None,
    tenant: ResolvedTenant | None,
    settings: Settings | None = None,
) -> AccessError:
    """Map a deny decision to the error carrying the caller-facing policy.

    Unauthenticated goes to login. A tenant mismatch forces a logout and a login scoped to
    the resolved tenant. Missing permissions send the user to their role's landing page.
    """

    if decision.allowed:
        raise ValueError("cannot build a denial for an allow decision")

    if decision.reason is DenyReason.UNAUTHENTICATED:
        return Unauthenticated(redirect_to=login_page_for(tenant, settings))
    if decision.reason is DenyReason.TENANT_MISMATCH:
        return TenantMismatch(redirect_to=login_page_for(tenant, settings), clear_session=True)
    role = principal.role if principal is not None else None
    return InsufficientPermission(redirect_to=landing_page_for(role))
