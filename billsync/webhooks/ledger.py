"""Idempotency ledger.

Every event is claimed exactly once per (provider, event_id). The claim is committed
in its own transaction before any state is touched, so concurrent redeliveries of
one event race on the unique constraint and only one of them goes on to process.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import crud, schemas
from billsync.core.exceptions import InfrastructureError
from billsync.core.shared_models import LedgerOutcome
from billsync.schemas.events import NormalizedEvent


@dataclass(frozen=True)
class ClaimResult:
    """Result of claiming an event in the ledger."""

    is_new: bool


class IdempotencyLedger:
    """Claims, finalizes and releases ledger rows."""

    async def record_if_new(self, db: AsyncSession, event: NormalizedEvent) -> ClaimResult:
        """Claim an event.

        Args:
            db: Database session, used for this claim only
            event: The decoded event

        Returns:
            ClaimResult: `is_new` is True for exactly one caller per event

        Raises:
            InfrastructureError: If the ledger cannot be written
        """
        claim = schemas.ProcessedEventCreate(
            provider=event.provider.value,
            event_id=event.event_id,
            event_type=event.provider_event_type,
        )
        try:
            is_new = await crud.processed_event.claim(db, obj_in=claim)
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Could not claim event {event.event_id}: {e}") from e
        return ClaimResult(is_new=is_new)

    async def finalize(
        self,
        db: AsyncSession,
        event: NormalizedEvent,
        outcome: LedgerOutcome,
        account_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Record the terminal outcome of a claimed event.

        Returns:
            bool: False if the row was already final (or gone)

        Raises:
            InfrastructureError: If the ledger cannot be written
        """
        try:
            return await crud.processed_event.finalize(
                db,
                provider=event.provider.value,
                event_id=event.event_id,
                outcome=outcome,
                account_id=account_id,
                error_message=error_message,
            )
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Could not finalize event {event.event_id}: {e}") from e

    async def release(self, db: AsyncSession, event: NormalizedEvent) -> bool:
        """Give up a claim whose processing never committed, so a redelivery can retry it.

        Returns:
            bool: True if the claim was removed

        Raises:
            InfrastructureError: If the ledger cannot be written
        """
        try:
            return await crud.processed_event.release(
                db, provider=event.provider.value, event_id=event.event_id
            )
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Could not release event {event.event_id}: {e}") from e

    async def record_delivery(
        self, db: AsyncSession, event: NormalizedEvent, outcome: str
    ) -> None:
        """Append one row to the delivery log.

        Raises:
            InfrastructureError: If the log cannot be written
        """
        delivery = schemas.WebhookDeliveryCreate(
            provider=event.provider.value, event_id=event.event_id, outcome=outcome
        )
        try:
            await crud.webhook_delivery.create(db, obj_in=delivery)
        except SQLAlchemyError as e:
            raise InfrastructureError(f"Could not log delivery of {event.event_id}: {e}") from e
