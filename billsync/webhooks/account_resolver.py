"""Resolve webhook events to internal accounts."""

from sqlalchemy.ext.asyncio import AsyncSession

from billsync import crud
from billsync.core.exceptions import OrphanAccountError
from billsync.schemas.events import NormalizedEvent


class AccountResolver:
    """Find the single account an event belongs to.

    An explicit account reference from checkout metadata wins. Otherwise the
    provider's subscription ID, then customer ID, are looked up among the records
    that provider owns.
    """

    async def resolve(self, db: AsyncSession, event: NormalizedEvent) -> str:
        """Resolve an event to an account ID.

        Args:
            db: Database session
            event: The decoded event

        Returns:
            str: The account ID

        Raises:
            OrphanAccountError: If zero or several accounts match
        """
        if event.account_ref:
            account = await crud.account.get(db, event.account_ref)
            if account:
                return account.id

        if event.subscription_ref:
            matches = await crud.account_subscription.find_by_subscription_ref(
                db, provider=event.provider, subscription_ref=event.subscription_ref
            )
            if len(matches) == 1:
                return matches[0].account_id
            if len(matches) > 1:
                raise OrphanAccountError(
                    event.account_ref,
                    f"Subscription {event.subscription_ref} matches {len(matches)} accounts",
                )

        if event.customer_ref:
            matches = await crud.account_subscription.find_by_customer_ref(
                db, provider=event.provider, customer_ref=event.customer_ref
            )
            if len(matches) == 1:
                return matches[0].account_id
            if len(matches) > 1:
                raise OrphanAccountError(
                    event.account_ref,
                    f"Customer {event.customer_ref} matches {len(matches)} accounts",
                )

        raise OrphanAccountError(event.account_ref)
