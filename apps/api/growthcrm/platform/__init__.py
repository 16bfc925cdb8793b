from growthcrm.platform.security.context import AccessScope, Principal
from growthcrm.platform.security.errors import (
    AccessError,
    InsufficientPermission,
    TenantInactive,
    TenantMismatch,
    TenantNotFound,
    Unauthenticated,
)

__all__ = [
    "AccessError",
    "AccessScope",
    "InsufficientPermission",
    "Principal",
    "TenantInactive",
    "TenantMismatch",
    "TenantNotFound",
    "Unauthenticated",
]
