"""Dependencies that are used in the API endpoints."""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request

from billsync.core.config import settings
from billsync.core.logging import logger
from billsync.db.session import AsyncSessionLocal, get_db  # noqa: F401
from billsync.webhooks.dispatcher import WebhookDispatcher


async def get_dispatcher(request: Request) -> WebhookDispatcher:
    """Get the webhook dispatcher of the application.

    The dispatcher is built at startup. Without a lifespan run, one bound to the default
    session factory is created on first use.
    """
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = WebhookDispatcher(AsyncSessionLocal)
        request.app.state.dispatcher = dispatcher
    return dispatcher


async def require_internal_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    """Guard the read API when an internal API key is configured.

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    if not settings.INTERNAL_API_KEY:
        return
    if not x_api_key or not hmac.compare_digest(
        x_api_key.encode("utf-8"), settings.INTERNAL_API_KEY.encode("utf-8")
    ):
        logger.warning("Rejected read API request with missing or invalid X-API-Key")
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
