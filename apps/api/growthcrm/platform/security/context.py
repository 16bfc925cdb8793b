from __future__ import annotations

from dataclasses import dataclass

from growthcrm.authz.registry import PermissionSet
from growthcrm.tenancy.records import ResolvedTenant, TenantRecord


@dataclass(frozen=True, slots=True)
class Principal:
    """Authoritative identity for one request, re-derived from the user store."""

    user_id: str
    role: str
    tenant_id: str | None
    permission_set: PermissionSet
    email: str | None = None
    correlation_id: str | None = None


@dataclass(frozen=True, slots=True)
class AccessScope:
    """An authorized principal together with the tenant it was authorized against."""

    principal: Principal
    tenant: ResolvedTenant

    @property
    def tenant_id(self) -> str | None:
        """Tenant that owns reads and writes made under this scope."""
        if isinstance(self.tenant, TenantRecord):
            return self.tenant.id
        return self.principal.tenant_id

    @property
    def actor_user_id(self) -> str:
        return self.principal.user_id
