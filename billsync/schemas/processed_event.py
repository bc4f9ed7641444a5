"""Idempotency ledger schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billsync.core.shared_models import LedgerOutcome


class ProcessedEventCreate(BaseModel):
    """Ledger claim schema."""

    provider: str
    event_id: str
    event_type: Optional[str] = None


class ProcessedEvent(ProcessedEventCreate):
    """Ledger entry schema."""

    model_config = {"from_attributes": True}

    id: UUID
    account_id: Optional[str] = None
    outcome: LedgerOutcome
    error_message: Optional[str] = None
    received_at: datetime
    finalized_at: Optional[datetime] = None


class WebhookDeliveryCreate(BaseModel):
    """Delivery log entry creation schema."""

    provider: str
    event_id: str
    outcome: str = Field(..., description="Dispatch outcome of this delivery")


class WebhookDelivery(WebhookDeliveryCreate):
    """Delivery log entry schema."""

    model_config = {"from_attributes": True}

    id: UUID
    received_at: datetime
