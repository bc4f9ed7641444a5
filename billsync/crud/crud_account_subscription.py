"""CRUD operations for account subscription records."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import schemas
from billsync.core.datetime_utils import utc_now_naive
from billsync.core.shared_models import PaymentProvider
from billsync.crud._base import CRUDBase
from billsync.db.unit_of_work import UnitOfWork
from billsync.models import AccountSubscription


def _state_values(state: schemas.SubscriptionState) -> dict[str, Any]:
    """Column values for a computed state, enums stored by value."""
    return {
        "active_provider": state.active_provider.value,
        "provider_customer_ref": state.provider_customer_ref,
        "provider_subscription_ref": state.provider_subscription_ref,
        "status": state.status.value,
        "tier": state.tier.value,
        "period_end": state.period_end,
    }


class CRUDAccountSubscription(CRUDBase[AccountSubscription, schemas.SubscriptionState]):
    """CRUD operations for account subscriptions.

    Writes go through `insert_initial`, `compare_and_swap` and `touch_watermark`. Each
    reports a lost race instead of raising so the caller can re-read and re-evaluate.
    """

    async def get_by_account(
        self, db: AsyncSession, account_id: str
    ) -> Optional[AccountSubscription]:
        """Get the subscription record of an account.

        Args:
            db: Database session
            account_id: Account ID

        Returns:
            AccountSubscription or None
        """
        query = select(AccountSubscription).where(AccountSubscription.account_id == account_id)
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def find_by_subscription_ref(
        self, db: AsyncSession, *, provider: PaymentProvider, subscription_ref: str
    ) -> list[AccountSubscription]:
        """Find records owned by a provider with the given subscription ID.

        Args:
            db: Database session
            provider: Provider that issued the reference
            subscription_ref: Provider subscription ID

        Returns:
            list[AccountSubscription]: Matching records, normally zero or one
        """
        query = select(AccountSubscription).where(
            AccountSubscription.active_provider == provider.value,
            AccountSubscription.provider_subscription_ref == subscription_ref,
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def find_by_customer_ref(
        self, db: AsyncSession, *, provider: PaymentProvider, customer_ref: str
    ) -> list[AccountSubscription]:
        """Find records owned by a provider with the given customer ID.

        Args:
            db: Database session
            provider: Provider that issued the reference
            customer_ref: Provider customer ID

        Returns:
            list[AccountSubscription]: Matching records, normally zero or one
        """
        query = select(AccountSubscription).where(
            AccountSubscription.active_provider == provider.value,
            AccountSubscription.provider_customer_ref == customer_ref,
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def insert_initial(
        self,
        db: AsyncSession,
        *,
        account_id: str,
        state: schemas.SubscriptionState,
        event_time: datetime,
        event_id: str,
        uow: UnitOfWork,
    ) -> bool:
        """Insert the first record of an account at version 1.

        Args:
            db: Database session
            account_id: Account ID
            state: State produced by the first accepted transition
            event_time: Provider time of the event
            event_id: Provider event ID
            uow: Unit of work the insert belongs to

        Returns:
            bool: False if another transition created the record first
        """
        db.add(
            AccountSubscription(
                account_id=account_id,
                version=1,
                last_event_at=event_time,
                last_event_id=event_id,
                **_state_values(state),
            )
        )
        try:
            await db.flush()
        except IntegrityError:
            return False
        return True

    async def compare_and_swap(
        self,
        db: AsyncSession,
        *,
        account_id: str,
        expected_version: int,
        state: schemas.SubscriptionState,
        event_time: datetime,
        event_id: str,
        uow: UnitOfWork,
    ) -> bool:
        """Write a new state if the record is still at the expected version.

        The version is bumped by exactly one in the same statement.

        Args:
            db: Database session
            account_id: Account ID
            expected_version: Version the new state was computed from
            state: New state
            event_time: Provider time of the event
            event_id: Provider event ID
            uow: Unit of work the update belongs to

        Returns:
            bool: False if the record moved on since it was read
        """
        stmt = (
            update(AccountSubscription)
            .where(
                AccountSubscription.account_id == account_id,
                AccountSubscription.version == expected_version,
            )
            .values(
                version=AccountSubscription.version + 1,
                last_event_at=event_time,
                last_event_id=event_id,
                modified_at=utc_now_naive(),
                **_state_values(state),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    async def touch_watermark(
        self,
        db: AsyncSession,
        *,
        account_id: str,
        expected_version: int,
        event_time: datetime,
        event_id: str,
        uow: UnitOfWork,
    ) -> bool:
        """Record a newer accepted event that left the state as it was.

        The version stays put, and the watermark only moves forward: the update is
        skipped when the record changed since it was read or already reflects a newer
        event.

        Args:
            db: Database session
            account_id: Account ID
            expected_version: Version the event was evaluated against
            event_time: Provider time of the event
            event_id: Provider event ID
            uow: Unit of work the update belongs to

        Returns:
            bool: False if the record moved on since it was read
        """
        stmt = (
            update(AccountSubscription)
            .where(
                AccountSubscription.account_id == account_id,
                AccountSubscription.version == expected_version,
                or_(
                    AccountSubscription.last_event_at.is_(None),
                    AccountSubscription.last_event_at <= event_time,
                ),
            )
            .values(
                last_event_at=event_time,
                last_event_id=event_id,
                modified_at=utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1


account_subscription = CRUDAccountSubscription(AccountSubscription)
