"""Audit entry schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AuditEntryBase(BaseModel):
    """Audit entry base schema."""

    account_id: str = Field(..., description="Account the transition applied to")
    version: int = Field(..., description="Record version produced by the transition")
    previous_status: str
    new_status: str
    previous_tier: str
    new_tier: str
    provider: str = Field(..., description="Provider that sent the triggering event")
    event_type: str = Field(..., description="Normalized type of the triggering event")
    event_id: str = Field(..., description="Provider event ID of the triggering event")
    provider_event_time: datetime
    new_period_end: Optional[datetime] = None
    new_customer_ref: Optional[str] = None
    new_subscription_ref: Optional[str] = None


class AuditEntryCreate(AuditEntryBase):
    """Audit entry creation schema."""


class AuditEntry(AuditEntryBase):
    """Audit entry schema."""

    model_config = {"from_attributes": True}

    id: UUID
    applied_at: datetime
