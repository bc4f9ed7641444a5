"""Service for reading subscription state."""

from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from billsync import crud, schemas
from billsync.core.exceptions import NotFoundException
from billsync.core.providers import provider_for_locale
from billsync.core.shared_models import SubscriptionStatus
from billsync.webhooks.audit import replay_audit_history

# Statuses in which the account has no live provider relationship and needs a checkout
_CHECKOUT_STATUSES = {SubscriptionStatus.NONE, SubscriptionStatus.EXPIRED}


class SubscriptionService:
    """Read model of subscription records for billing-display collaborators."""

    async def get_subscription(self, db: AsyncSession, account_id: str) -> schemas.SubscriptionInfo:
        """Get the subscription record of an account.

        Accounts that never had an accepted transition get a synthesized record at
        version 0 with status NONE.

        Args:
            db: Database session
            account_id: Account ID

        Returns:
            SubscriptionInfo: The record, with the checkout provider when relevant

        Raises:
            NotFoundException: If the account is unknown
        """
        record = await crud.account_subscription.get_by_account(db, account_id)
        account = await crud.account.get(db, account_id)
        if record is None and account is None:
            raise NotFoundException(f"Account {account_id} not found")

        if record is None:
            info = schemas.SubscriptionInfo(account_id=account_id)
        else:
            info = schemas.SubscriptionInfo.model_validate(record)

        if info.status in _CHECKOUT_STATUSES:
            info.checkout_provider = provider_for_locale(account.locale if account else None)
        return info

    async def list_audit_history(
        self, db: AsyncSession, account_id: str
    ) -> List[schemas.AuditEntry]:
        """Get the audit trail of an account in version order.

        Raises:
            NotFoundException: If the account is unknown
        """
        entries = await crud.audit_entry.get_multi_by_account(db, account_id)
        if not entries and await crud.account.get(db, account_id) is None:
            raise NotFoundException(f"Account {account_id} not found")
        return [schemas.AuditEntry.model_validate(entry) for entry in entries]

    async def verify_audit_trail(self, db: AsyncSession, account_id: str) -> bool:
        """Check that replaying the audit trail reproduces the stored record.

        Args:
            db: Database session
            account_id: Account ID

        Returns:
            bool: True when the version count and replayed state both match
        """
        record = await crud.account_subscription.get_by_account(db, account_id)
        entries = await self.list_audit_history(db, account_id)
        if record is None:
            return not entries

        current = schemas.AccountSubscription.model_validate(record)
        try:
            replayed = replay_audit_history(entries)
        except ValueError:
            return False
        return len(entries) == current.version and replayed == current.state


# Singleton instance
subscription_service = SubscriptionService()
