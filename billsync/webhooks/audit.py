"""Audit trail of accepted subscription transitions."""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from billsync import crud, schemas
from billsync.db.unit_of_work import UnitOfWork
from billsync.models import AuditEntry
from billsync.schemas.events import NormalizedEvent


class AuditTrailWriter:
    """Write and read the append-only audit trail."""

    async def append(
        self,
        db: AsyncSession,
        *,
        account_id: str,
        version: int,
        before: schemas.SubscriptionState,
        after: schemas.SubscriptionState,
        event: NormalizedEvent,
        uow: UnitOfWork,
    ) -> AuditEntry:
        """Add the entry for one transition to the transition's own transaction.

        Nothing is committed here; if the entry cannot be written the whole
        transition rolls back with it.

        Args:
            db: Database session of the transition
            account_id: Account ID
            version: Version the transition produced
            before: State before the transition
            after: State after the transition
            event: Triggering event
            uow: Unit of work of the transition

        Returns:
            AuditEntry: The flushed entry
        """
        entry = schemas.AuditEntryCreate(
            account_id=account_id,
            version=version,
            previous_status=before.status.value,
            new_status=after.status.value,
            previous_tier=before.tier.value,
            new_tier=after.tier.value,
            provider=event.provider.value,
            event_type=event.event_type.value,
            event_id=event.event_id,
            provider_event_time=event.provider_event_time,
            new_period_end=after.period_end,
            new_customer_ref=after.provider_customer_ref,
            new_subscription_ref=after.provider_subscription_ref,
        )
        return await crud.audit_entry.append(db, obj_in=entry, uow=uow)

    async def find_by_event(
        self, db: AsyncSession, event: NormalizedEvent
    ) -> Optional[AuditEntry]:
        """The entry an earlier delivery of this event wrote, if any."""
        return await crud.audit_entry.get_by_event(
            db, provider=event.provider.value, event_id=event.event_id
        )

    async def list_history(self, db: AsyncSession, account_id: str) -> List[AuditEntry]:
        """All entries of an account, oldest version first."""
        return await crud.audit_entry.get_multi_by_account(db, account_id)


def replay_audit_history(
    entries: List[schemas.AuditEntry],
) -> Optional[schemas.SubscriptionState]:
    """Rebuild a subscription state from its audit entries.

    Entries are applied in version order. The result must equal the stored record for
    a complete trail.

    Args:
        entries: Audit entries of one account

    Returns:
        SubscriptionState or None: Reconstructed state, None when there are no entries

    Raises:
        ValueError: If the versions are not exactly 1..N
    """
    if not entries:
        return None

    ordered = sorted(entries, key=lambda entry: entry.version)
    versions = [entry.version for entry in ordered]
    if versions != list(range(1, len(ordered) + 1)):
        raise ValueError(f"Audit trail has gaps or duplicates: versions {versions}")
    for previous, entry in zip(ordered, ordered[1:]):
        if entry.previous_status != previous.new_status:
            raise ValueError(
                f"Audit entry {entry.version} starts from {entry.previous_status}, "
                f"but version {previous.version} ended at {previous.new_status}"
            )

    last = ordered[-1]
    return schemas.SubscriptionState(
        active_provider=last.provider,
        provider_customer_ref=last.new_customer_ref,
        provider_subscription_ref=last.new_subscription_ref,
        status=last.new_status,
        tier=last.new_tier,
        period_end=last.new_period_end,
    )
