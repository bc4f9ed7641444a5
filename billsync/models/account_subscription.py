"""Account subscription model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billsync.core.shared_models import PaymentProvider, SubscriptionStatus, SubscriptionTier
from billsync.models._base import Base


class AccountSubscription(Base):
    """Authoritative billing state of one account.

    Only the subscription state machine writes this table, always through a
    compare-and-swap on `version`.
    """

    __tablename__ = "account_subscription"

    account_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Provider ownership
    active_provider: Mapped[str] = mapped_column(
        String(50), default=PaymentProvider.NONE.value, nullable=False
    )
    provider_customer_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider_subscription_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Billing state
    status: Mapped[str] = mapped_column(
        String(50), default=SubscriptionStatus.NONE.value, nullable=False
    )
    tier: Mapped[str] = mapped_column(
        String(50), default=SubscriptionTier.FREE.value, nullable=False
    )
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    # Ordering
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    last_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_account_subscription_customer", "active_provider", "provider_customer_ref"),
        Index(
            "idx_account_subscription_subscription",
            "active_provider",
            "provider_subscription_ref",
        ),
    )
