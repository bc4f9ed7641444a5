"""Account subscription schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billsync.core.shared_models import PaymentProvider, SubscriptionStatus, SubscriptionTier


class SubscriptionState(BaseModel):
    """The mutable part of a subscription record, as computed by the state machine."""

    active_provider: PaymentProvider = Field(default=PaymentProvider.NONE)
    provider_customer_ref: Optional[str] = None
    provider_subscription_ref: Optional[str] = None
    status: SubscriptionStatus = Field(default=SubscriptionStatus.NONE)
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    period_end: Optional[datetime] = None


class AccountSubscription(SubscriptionState):
    """Account subscription record schema."""

    model_config = {"from_attributes": True}

    id: Optional[UUID] = None
    account_id: str
    version: int = Field(0, description="Number of accepted transitions so far")
    last_event_at: Optional[datetime] = Field(
        None, description="Provider time of the event behind the current version"
    )
    last_event_id: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    @property
    def state(self) -> SubscriptionState:
        """The mutable fields only, for comparisons against a candidate state."""
        return SubscriptionState(**self.model_dump(include=set(SubscriptionState.model_fields)))


class SubscriptionInfo(AccountSubscription):
    """Subscription record as served to billing-display collaborators."""

    checkout_provider: Optional[PaymentProvider] = Field(
        None, description="Provider to use for a new checkout, set when no provider is active"
    )
