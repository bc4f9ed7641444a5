"""Normalized webhook event schema."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from billsync.core.shared_models import (
    EventType,
    PaymentProvider,
    SubscriptionStatus,
    SubscriptionTier,
)

SIGNUP_EVENT_TYPES = frozenset({EventType.CHECKOUT_COMPLETED, EventType.SUBSCRIPTION_CREATED})


class NormalizedEvent(BaseModel):
    """Provider-independent view of one webhook event."""

    model_config = ConfigDict(frozen=True)

    provider: PaymentProvider = Field(..., description="Provider that sent the event")
    event_id: str = Field(..., description="Event ID, unique per provider")
    event_type: EventType = Field(..., description="Normalized event type")
    provider_event_type: str = Field(..., description="Event name as sent by the provider")
    provider_event_time: datetime = Field(
        ..., description="Provider-reported time of the event (naive UTC)"
    )
    account_ref: Optional[str] = Field(None, description="Internal account ID from metadata")
    customer_ref: Optional[str] = Field(None, description="Provider customer ID")
    subscription_ref: Optional[str] = Field(None, description="Provider subscription ID")
    status_hint: Optional[SubscriptionStatus] = Field(
        None, description="Status reported by the provider, if any"
    )
    tier_hint: Optional[SubscriptionTier] = Field(None, description="Plan tier, if known")
    period_end_hint: Optional[datetime] = Field(
        None, description="Next billing or expiry date (naive UTC)"
    )

    @property
    def is_signup(self) -> bool:
        """Whether this event starts a subscription relationship."""
        return self.event_type in SIGNUP_EVENT_TYPES
