from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from growthcrm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subdomain: Mapped[str] = mapped_column(String(63), nullable=False, unique=True, index=True)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="starter")
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="trial")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    max_contacts: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_advisors: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
