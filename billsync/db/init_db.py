"""Initialize the database schema."""

from sqlalchemy.ext.asyncio import AsyncEngine

from billsync.core.logging import logger
from billsync.models._base import Base


async def init_db(engine: AsyncEngine) -> None:
    """Create any missing tables.

    Used for local runs and tests; deployed environments run alembic migrations instead.

    Args:
    ----
        engine (AsyncEngine): The engine to create the tables with.
    """
    # Register every model on the metadata before creating
    import billsync.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables are in place")
