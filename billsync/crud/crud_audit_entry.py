"""CRUD operations for the audit trail."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billsync import schemas
from billsync.crud._base import CRUDBase
from billsync.db.unit_of_work import UnitOfWork
from billsync.models import AuditEntry


class CRUDAuditEntry(CRUDBase[AuditEntry, schemas.AuditEntryCreate]):
    """CRUD operations for audit entries. Entries are never updated or deleted."""

    async def append(
        self, db: AsyncSession, *, obj_in: schemas.AuditEntryCreate, uow: UnitOfWork
    ) -> AuditEntry:
        """Add an entry inside the caller's transaction.

        Args:
            db: Database session
            obj_in: The entry
            uow: Unit of work of the subscription transition

        Returns:
            AuditEntry: The flushed entry
        """
        return await self.create(db, obj_in=obj_in, uow=uow)

    async def get_by_event(
        self, db: AsyncSession, *, provider: str, event_id: str
    ) -> Optional[AuditEntry]:
        """Get the entry written for a provider event, if it was ever applied."""
        query = select(AuditEntry).where(
            AuditEntry.provider == provider, AuditEntry.event_id == event_id
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_multi_by_account(self, db: AsyncSession, account_id: str) -> List[AuditEntry]:
        """Get all entries of an account in version order.

        Args:
            db: Database session
            account_id: Account ID

        Returns:
            List[AuditEntry]: Entries, oldest first
        """
        query = (
            select(AuditEntry)
            .where(AuditEntry.account_id == account_id)
            .order_by(AuditEntry.version.asc())
        )
        result = await db.execute(query)
        return list(result.scalars().all())


audit_entry = CRUDAuditEntry(AuditEntry)
