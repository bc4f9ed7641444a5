"""Unit of work for multi-statement transactions."""

from types import TracebackType
from typing import Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession


class UnitOfWork:
    """Commit everything done inside the block, or nothing.

    CRUD methods accept `uow=` and skip their own commit when one is given, so several
    writes can share one transaction:

    ```python
    async with UnitOfWork(db) as uow:
        await crud.account_subscription.compare_and_swap(db, ..., uow=uow)
        await crud.audit_entry.append(db, obj_in=entry, uow=uow)
    ```
    """

    def __init__(self, session: AsyncSession):
        """Initialize the unit of work.

        Args:
            session: The session whose transaction this unit of work controls.
        """
        self.session = session
        self._committed = False

    @property
    def committed(self) -> bool:
        """Whether the transaction was committed."""
        return self._committed

    async def __aenter__(self) -> "UnitOfWork":
        """Enter the unit of work."""
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        """Commit on success, roll back on any exception (cancellation included)."""
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    async def commit(self) -> None:
        """Commit the transaction."""
        await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        """Roll back the transaction."""
        await self.session.rollback()
