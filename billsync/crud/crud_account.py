"""Read-only CRUD operations for accounts."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billsync.crud._base import CRUDBase
from billsync.models import Account


class CRUDAccount(CRUDBase[Account, None]):
    """Account lookups. Accounts are owned by the identity subsystem."""

    async def get(self, db: AsyncSession, id: str) -> Optional[Account]:
        """Get an account by its string ID."""
        result = await db.execute(select(Account).where(Account.id == id))
        return result.scalar_one_or_none()


account = CRUDAccount(Account)
