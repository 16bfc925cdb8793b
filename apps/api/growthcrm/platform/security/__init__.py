from growthcrm.platform.security.context import AccessScope, Principal
from growthcrm.platform.security.errors import (
    AccessError,
    InsufficientPermission,
    TenantInactive,
    TenantMismatch,
    TenantNotFound,
    Unauthenticated,
)
from growthcrm.platform.security.repository import TenantScopedRepository
from growthcrm.platform.security.rls import apply_tenant_filter, scope_tenant_uuid, validate_tenant_write

__all__ = [
    "AccessError",
    "AccessScope",
    "InsufficientPermission",
    "Principal",
    "TenantInactive",
    "TenantMismatch",
    "TenantNotFound",
    "TenantScopedRepository",
    "Unauthenticated",
    "apply_tenant_filter",
    "scope_tenant_uuid",
    "validate_tenant_write",
]
