"""CRUD operations for the idempotency ledger and the delivery log."""

from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import schemas
from billsync.core.datetime_utils import utc_now_naive
from billsync.core.shared_models import LedgerOutcome
from billsync.crud._base import CRUDBase
from billsync.models import ProcessedEvent, WebhookDelivery


class CRUDProcessedEvent(CRUDBase[ProcessedEvent, schemas.ProcessedEventCreate]):
    """CRUD operations for processed events."""

    async def claim(self, db: AsyncSession, *, obj_in: schemas.ProcessedEventCreate) -> bool:
        """Insert the ledger row for an event, committing immediately.

        The (provider, event_id) unique constraint decides the race: exactly one
        concurrent caller gets True.

        Args:
            db: Database session
            obj_in: Provider, event ID and event type

        Returns:
            bool: True if this call created the row, False if it already existed
        """
        db.add(self.model(**obj_in.model_dump(), outcome=LedgerOutcome.RECEIVED.value))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return False
        return True

    async def get_by_event(
        self, db: AsyncSession, *, provider: str, event_id: str
    ) -> Optional[ProcessedEvent]:
        """Get the ledger row of an event.

        Args:
            db: Database session
            provider: Provider name
            event_id: Provider event ID

        Returns:
            ProcessedEvent or None
        """
        query = select(ProcessedEvent).where(
            ProcessedEvent.provider == provider, ProcessedEvent.event_id == event_id
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def finalize(
        self,
        db: AsyncSession,
        *,
        provider: str,
        event_id: str,
        outcome: LedgerOutcome,
        account_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Record the terminal outcome of a claimed event.

        Only a row still in `received` is updated; terminal rows are never touched again.

        Args:
            db: Database session
            provider: Provider name
            event_id: Provider event ID
            outcome: Terminal outcome
            account_id: Resolved account, if known
            error_message: Reason, for ERROR outcomes

        Returns:
            bool: True if the row was finalized by this call
        """
        if outcome == LedgerOutcome.RECEIVED:
            raise ValueError("Cannot finalize an event as received")

        stmt = (
            update(ProcessedEvent)
            .where(
                ProcessedEvent.provider == provider,
                ProcessedEvent.event_id == event_id,
                ProcessedEvent.outcome == LedgerOutcome.RECEIVED.value,
            )
            .values(
                outcome=outcome.value,
                account_id=account_id,
                error_message=error_message,
                finalized_at=utc_now_naive(),
                modified_at=utc_now_naive(),
            )
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    async def release(self, db: AsyncSession, *, provider: str, event_id: str) -> bool:
        """Delete an unfinalized claim so the next delivery can claim the event again.

        Args:
            db: Database session
            provider: Provider name
            event_id: Provider event ID

        Returns:
            bool: True if a `received` row was deleted
        """
        stmt = delete(ProcessedEvent).where(
            ProcessedEvent.provider == provider,
            ProcessedEvent.event_id == event_id,
            ProcessedEvent.outcome == LedgerOutcome.RECEIVED.value,
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1


class CRUDWebhookDelivery(CRUDBase[WebhookDelivery, schemas.WebhookDeliveryCreate]):
    """CRUD operations for the delivery log."""

    async def count_by_outcome(
        self, db: AsyncSession, *, provider: str, event_id: str
    ) -> dict[str, int]:
        """Count deliveries of one event per outcome.

        Args:
            db: Database session
            provider: Provider name
            event_id: Provider event ID

        Returns:
            dict[str, int]: Outcome to number of deliveries
        """
        query = (
            select(WebhookDelivery.outcome, func.count())
            .where(WebhookDelivery.provider == provider, WebhookDelivery.event_id == event_id)
            .group_by(WebhookDelivery.outcome)
        )
        result = await db.execute(query)
        return {outcome: count for outcome, count in result.all()}


processed_event = CRUDProcessedEvent(ProcessedEvent)
webhook_delivery = CRUDWebhookDelivery(WebhookDelivery)
