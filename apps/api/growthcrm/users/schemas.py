from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


UserStatus = Literal["active", "inactive"]
InvitationStatus = Literal["pending", "accepted", "expired", "revoked"]


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    email: str
    name: str | None
    role: str
    permissions: str | list[str] | None
    status: str
    advisor_id: UUID | None
    invited_by: UUID | None
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    name: str | None = None
    role: str | None = None
    status: UserStatus | None = None


class UserPermissionsUpdate(BaseModel):
    # "all", an explicit list of keys, or null to fall back to the role default
    permissions: Literal["all"] | list[str] | None


class InvitationCreate(BaseModel):
    email: EmailStr
    role: str = Field(min_length=1)


class InvitationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    email: str
    role: str
    status: str
    invited_by: UUID | None
    expires_at: datetime
    accepted_at: datetime | None
    created_at: datetime


class InvitationCreated(InvitationRead):
    token: str


class InvitationRedeem(BaseModel):
    token: str = Field(min_length=32)
    password: str = Field(min_length=8)
    name: str | None = None


class ClientAssignRequest(BaseModel):
    advisor_id: UUID | None = None
