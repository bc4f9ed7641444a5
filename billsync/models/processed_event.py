"""Idempotency ledger models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billsync.core.datetime_utils import utc_now_naive
from billsync.core.shared_models import LedgerOutcome
from billsync.models._base import Base


class ProcessedEvent(Base):
    """One row per (provider, event_id) ever claimed.

    The unique constraint is the only duplicate-detection mechanism. The outcome moves
    from `received` to a terminal value exactly once.
    """

    __tablename__ = "processed_event"

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    outcome: Mapped[str] = mapped_column(
        String(50), default=LedgerOutcome.RECEIVED.value, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utc_now_naive, nullable=False
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_processed_event_provider_event"),
        Index("idx_processed_event_outcome", "outcome"),
    )


class WebhookDelivery(Base):
    """Append-only log of every delivery that reached the ledger, duplicates included."""

    __tablename__ = "webhook_delivery"

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[str] = mapped_column(String(50), nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utc_now_naive, nullable=False
    )

    __table_args__ = (Index("idx_webhook_delivery_event", "provider", "event_id"),)
