"""Health check endpoints."""

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billsync.api import deps
from billsync.api.router import TrailingSlashRouter
from billsync.core.exceptions import InfrastructureError
from billsync.core.logging import logger

router = TrailingSlashRouter()


@router.get("")
async def health_check() -> dict[str, str]:
    """Liveness probe: the process is up and serving requests."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(deps.get_db)) -> dict[str, str]:
    """Readiness probe: the database accepts queries.

    Webhooks that arrive while the database is unreachable would only be answered
    with 503, so the instance should not receive traffic until this passes.

    Raises:
        InfrastructureError: If the database cannot be reached (503)
    """
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Readiness check failed: {e}")
        raise InfrastructureError("Database unavailable") from e
    return {"status": "ready"}
