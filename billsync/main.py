"""Main module of the FastAPI application.

Serves the two provider webhook endpoints, the read API for billing-display
collaborators and the health probes.
"""

import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from billsync.api.middleware import (
    add_request_id,
    billsync_exception_handler,
    exception_logging_middleware,
    infrastructure_exception_handler,
    log_requests,
    not_found_exception_handler,
    validation_exception_handler,
)
from billsync.api.router import TrailingSlashRouter
from billsync.api.v1.api import api_router
from billsync.core.config import settings
from billsync.core.exceptions import BillsyncException, InfrastructureError, NotFoundException
from billsync.core.logging import logger
from billsync.db.init_db import init_db
from billsync.db.session import AsyncSessionLocal, async_engine
from billsync.webhooks.dispatcher import WebhookDispatcher

PROJECT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_migrations() -> None:
    """Upgrade the database to the latest alembic revision."""
    logger.info("Running alembic migrations...")
    env = {**os.environ, "PYTHONPATH": PROJECT_DIR}
    subprocess.run(["alembic", "upgrade", "head"], check=True, cwd=PROJECT_DIR, env=env)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the schema and the webhook dispatcher; release the pool on shutdown."""
    if settings.RUN_ALEMBIC_MIGRATIONS:
        run_migrations()
    elif settings.CREATE_TABLES_ON_STARTUP:
        await init_db(async_engine)

    app.state.dispatcher = WebhookDispatcher(AsyncSessionLocal)
    logger.with_context(environment=settings.ENVIRONMENT).info(
        f"{settings.PROJECT_NAME} ready to receive webhooks"
    )

    yield

    await async_engine.dispose()


# Slash redirects are disabled: a redirected POST would lose the signed body
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(api_router)

# Registered innermost first: exception logging wraps request logging wraps request IDs
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(InfrastructureError)(infrastructure_exception_handler)
app.exception_handler(BillsyncException)(billsync_exception_handler)
