from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class PrincipalRead(BaseModel):
    user_id: str
    email: str | None
    role: str
    tenant_id: str | None
    permissions: str | list[str]
    landing_page: str
    pages: list[str]
