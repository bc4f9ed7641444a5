"""Base CRUD class for the billing tables."""

from typing import Any, Generic, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billsync.db.unit_of_work import UnitOfWork
from billsync.models._base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)


class CRUDBase(Generic[ModelType, CreateSchemaType]):
    """Lookup by primary key and insert, shared by every table.

    Rows of the billing tables are either append-only (ledger, deliveries, audit) or
    changed through a dedicated compare-and-swap, so there is no generic update or
    delete here.
    """

    def __init__(self, model: Type[ModelType]):
        """Bind the CRUD object to its model.

        Args:
        ----
            model (Type[ModelType]): The SQLAlchemy model.

        """
        self.model = model

    async def get(self, db: AsyncSession, id: UUID) -> Optional[ModelType]:
        """Get a row by primary key, or None."""
        result = await db.execute(select(self.model).where(self.model.id == id))
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        *,
        obj_in: Union[CreateSchemaType, dict[str, Any]],
        uow: Optional[UnitOfWork] = None,
    ) -> ModelType:
        """Insert a row.

        Inside a unit of work the row is only flushed, and becomes durable when the
        unit of work commits. Without one the insert is committed right away.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (CreateSchemaType | dict): Column values.
            uow (UnitOfWork, optional): Transaction the insert belongs to.

        Returns:
        -------
            ModelType: The inserted row.

        """
        values = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(**values)
        db.add(db_obj)
        if uow is None:
            await db.commit()
        else:
            await db.flush()
        return db_obj
