from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


InterviewStatus = Literal["scheduled", "completed", "analyzed", "cancelled", "no_show"]
CallStatus = Literal["scheduled", "completed", "qualified", "not_qualified", "cancelled", "no_show"]
SalesCallStatus = Literal["scheduled", "completed", "won", "lost", "cancelled", "no_show"]


class PodcastInterviewCreate(BaseModel):
    guest_name: str = Field(min_length=1)
    guest_email: EmailStr
    company: str | None = None
    job_title: str | None = None
    scheduled_date: datetime | None = None
    interview_status: InterviewStatus = "scheduled"
    notes: str | None = None
    zoom_meeting_id: str | None = None


class PodcastInterviewUpdate(BaseModel):
    guest_name: str | None = Field(default=None, min_length=1)
    guest_email: EmailStr | None = None
    company: str | None = None
    job_title: str | None = None
    scheduled_date: datetime | None = None
    interview_status: InterviewStatus | None = None
    notes: str | None = None
    zoom_meeting_id: str | None = None
    overall_score: int | None = Field(default=None, ge=0, le=50)
    intro_score: int | None = Field(default=None, ge=0)
    questions_flow_score: int | None = Field(default=None, ge=0)
    close_next_steps_score: int | None = Field(default=None, ge=0)
    ai_analysis: str | None = None
    qualified_for_discovery: bool | None = None


class PodcastInterviewRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    guest_name: str
    guest_email: str
    company: str | None
    job_title: str | None
    scheduled_date: datetime | None
    interview_status: str
    notes: str | None
    zoom_meeting_id: str | None
    overall_score: int | None
    intro_score: int | None
    questions_flow_score: int | None
    close_next_steps_score: int | None
    ai_analysis: str | None
    qualified_for_discovery: bool
    analyzed_at: datetime | None
    cascade_fired: bool
    dependent_record_id: UUID | None
    created_at: datetime
    updated_at: datetime


class DiscoveryCallCreate(BaseModel):
    contact_name: str = Field(min_length=1)
    company: str | None = None
    email: EmailStr | None = None
    call_date: datetime | None = None
    call_status: CallStatus = "scheduled"
    call_source: str | None = None
    notes: str | None = None


class DiscoveryCallUpdate(BaseModel):
    contact_name: str | None = Field(default=None, min_length=1)
    company: str | None = None
    email: EmailStr | None = None
    call_date: datetime | None = None
    call_status: CallStatus | None = None
    call_source: str | None = None
    notes: str | None = None


class DiscoveryCallRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    contact_name: str
    company: str | None
    email: str | None
    call_date: datetime | None
    call_status: str
    call_source: str | None
    notes: str | None
    source_record_id: UUID | None
    cascade_fired: bool
    dependent_record_id: UUID | None
    created_at: datetime
    updated_at: datetime


class SalesCallCreate(BaseModel):
    prospect_name: str = Field(min_length=1)
    company: str | None = None
    email: EmailStr | None = None
    call_date: datetime | None = None
    call_status: SalesCallStatus = "scheduled"
    deal_value: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = None


class SalesCallUpdate(BaseModel):
    prospect_name: str | None = Field(default=None, min_length=1)
    company: str | None = None
    email: EmailStr | None = None
    call_date: datetime | None = None
    call_status: SalesCallStatus | None = None
    deal_value: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None


class SalesCallRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    prospect_name: str
    company: str | None
    email: str | None
    call_date: datetime | None
    call_status: str
    deal_value: Decimal
    notes: str | None
    source_record_id: UUID | None
    created_at: datetime
    updated_at: datetime
