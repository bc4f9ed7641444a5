"""Audit entry model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billsync.core.datetime_utils import utc_now_naive
from billsync.models._base import Base


class AuditEntry(Base):
    """Immutable record of one accepted subscription transition.

    There is exactly one entry per (account_id, version) and at most one per provider
    event; replaying them in version order rebuilds the subscription record.
    """

    __tablename__ = "audit_entry"

    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    previous_status: Mapped[str] = mapped_column(String(50), nullable=False)
    new_status: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    new_tier: Mapped[str] = mapped_column(String(50), nullable=False)

    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_event_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    new_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    new_customer_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    new_subscription_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utc_now_naive, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("account_id", "version", name="uq_audit_entry_version"),
        UniqueConstraint("provider", "event_id", name="uq_audit_entry_event"),
    )
