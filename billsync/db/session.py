"""Database session configuration."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from billsync.core.config import settings

# Connection pool sizing:
# - A webhook delivery holds a connection only for the ledger insert and for the
#   read-modify-write of one subscription row, both short transactions
# - Pool size 10 + overflow 10 covers bursts of provider retries from both providers
# - pool_timeout stays well below the provider delivery timeout so a saturated pool
#   surfaces as an infrastructure error (and a provider retry), not a hung request
POOL_SIZE = 10
MAX_OVERFLOW = POOL_SIZE


def build_engine(database_uri: str) -> AsyncEngine:
    """Create the async engine for a database URI.

    Args:
        database_uri: SQLAlchemy async URI (postgresql+asyncpg or sqlite+aiosqlite).

    Returns:
        AsyncEngine: The configured engine.
    """
    if database_uri.startswith("sqlite"):
        # SQLite serializes writers itself; wait for the lock instead of failing fast
        return create_async_engine(database_uri, connect_args={"timeout": 30})

    return create_async_engine(
        database_uri,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=300,  # Recycle connections after 5 minutes
        pool_timeout=5,
        isolation_level="READ COMMITTED",
        connect_args={
            "server_settings": {
                "idle_in_transaction_session_timeout": "30000",
            },
            "command_timeout": 10,
        },
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine.

    Args:
        engine: The async engine.

    Returns:
        async_sessionmaker[AsyncSession]: Factory producing sessions that keep loaded
            attributes after commit.
    """
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async_engine = build_engine(str(settings.SQLALCHEMY_ASYNC_DATABASE_URI))

AsyncSessionLocal = build_session_factory(async_engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for one request of the read API.

    Webhook processing does not use this: the dispatcher opens a short session per
    stage from the session factory, so no connection is held across stages.

    Yields:
    ------
        AsyncSession: An async database session

    """
    async with AsyncSessionLocal() as db:
        yield db
