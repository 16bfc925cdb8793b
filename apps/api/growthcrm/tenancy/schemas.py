from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


SubscriptionTier = Literal["starter", "growth", "enterprise"]
SubscriptionStatus = Literal["active", "suspended", "cancelled", "trial"]


class TenantSignupRequest(BaseModel):
    business_name: str = Field(min_length=1, max_length=200)
    subdomain: str = Field(min_length=1, max_length=63)
    subscription_tier: SubscriptionTier = "starter"
    owner_email: EmailStr
    owner_password: str = Field(min_length=8)
    owner_name: str | None = None


class TenantStatusChangeRequest(BaseModel):
    subscription_status: SubscriptionStatus
    reason: str | None = None


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subdomain: str
    business_name: str
    subscription_tier: str
    subscription_status: str
    status: str
    max_contacts: int
    max_users: int
    max_advisors: int
    created_at: datetime
    updated_at: datetime
