from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from growthcrm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PodcastInterview(Base):
    __tablename__ = "podcast_interview"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.id"),
        nullable=True,
        index=True,
    )
    guest_name: Mapped[str] = mapped_column(Text, nullable=False)
    guest_email: Mapped[str] = mapped_column(String(320), nullable=False)
    company: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    interview_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="scheduled",
        server_default="scheduled",
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    zoom_meeting_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    overall_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    intro_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    questions_flow_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    close_next_steps_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ai_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    qualified_for_discovery: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
    )
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # flips false -> true once and never back
    cascade_fired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    dependent_record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class DiscoveryCall(Base):
    __tablename__ = "discovery_call"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.id"),
        nullable=True,
        index=True,
    )
    contact_name: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    call_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    call_status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled", server_default="scheduled")
    call_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, unique=True)
    cascade_fired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")
    dependent_record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class SalesCall(Base):
    __tablename__ = "sales_call"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenant.id"),
        nullable=True,
        index=True,
    )
    prospect_name: Mapped[str] = mapped_column(Text, nullable=False)
    company: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    call_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    call_status: Mapped[str] = mapped_column(String(32), nullable=False, default="scheduled", server_default="scheduled")
    deal_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
