from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from growthcrm.tenancy.models import Tenant


ACTIVE_STATUS = "active"


class TenantScope(Enum):
    NONE = "none"


NO_TENANT = TenantScope.NONE


@dataclass(frozen=True, slots=True)
class TenantLimits:
    max_contacts: int
    max_users: int
    max_advisors: int


@dataclass(frozen=True, slots=True)
class TenantRecord:
    id: str
    subdomain: str
    business_name: str
    subscription_tier: str
    subscription_status: str
    status: str
    limits: TenantLimits

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS

    @classmethod
    def from_model(cls, tenant: Tenant) -> TenantRecord:
        return cls(
            id=str(tenant.id),
            subdomain=tenant.subdomain,
            business_name=tenant.business_name,
            subscription_tier=tenant.subscription_tier,
            subscription_status=tenant.subscription_status,
            status=tenant.status,
            limits=TenantLimits(
                max_contacts=tenant.max_contacts,
                max_users=tenant.max_users,
                max_advisors=tenant.max_advisors,
            ),
        )

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subdomain": self.subdomain,
            "businessName": self.business_name,
            "subscriptionTier": self.subscription_tier,
            "subscriptionStatus": self.subscription_status,
            "status": self.status,
            "limits": {
                "maxContacts": self.limits.max_contacts,
                "maxUsers": self.limits.max_users,
                "maxAdvisors": self.limits.max_advisors,
            },
        }


ResolvedTenant = TenantRecord | TenantScope
