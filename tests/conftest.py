"""Common test fixtures and configuration for pytest.

Settings are read at import time, so the environment is prepared before anything
from billsync is imported. Integration tests get a fresh file-backed SQLite
database per test; a file (not `:memory:`) lets concurrent sessions use separate
connections and contend for locks like they would on a real server.
"""

import os

os.environ.setdefault("SQLALCHEMY_ASYNC_DATABASE_URI", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("LEMONSQUEEZY_WEBHOOK_SECRET", "ls_test_secret")
os.environ.setdefault("STRIPE_PRICE_TIERS", '{"price_pro_monthly": "pro"}')
os.environ.setdefault("LEMONSQUEEZY_VARIANT_TIERS", '{"42": "pro", "43": "enterprise"}')

from typing import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402

from billsync.db.init_db import init_db  # noqa: E402
from billsync.db.session import build_engine, build_session_factory  # noqa: E402
from billsync.models import Account  # noqa: E402
from billsync.webhooks.dispatcher import WebhookDispatcher  # noqa: E402
from billsync.webhooks.signature import SignatureVerifier  # noqa: E402
from billsync.webhooks.state_machine import SubscriptionStateMachine  # noqa: E402
from tests.fixtures.payloads import LEMONSQUEEZY_SECRET, STRIPE_SECRET  # noqa: E402


# Mock DB Session for Unit Tests
@pytest.fixture
async def mock_db_session():
    """Provide a mock DB session for unit tests."""
    mock_session = AsyncMock(spec=AsyncSession)
    yield mock_session


@pytest.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with all tables for each test function."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'billsync.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database."""
    return build_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a new database session for integration tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def accounts(session_factory) -> dict[str, Account]:
    """Seed the identity table: a US account and a German account."""
    seeded = {
        "acct_42": Account(id="acct_42", email="us-user@example.com", locale="en-US"),
        "acct_7": Account(id="acct_7", email="de-user@example.com", locale="de"),
        "acct_99": Account(id="acct_99", email="new-user@example.com", locale=None),
    }
    async with session_factory() as session:
        session.add_all(seeded.values())
        await session.commit()
    return seeded


@pytest.fixture
def state_machine(session_factory) -> SubscriptionStateMachine:
    """State machine with a short backoff and room for heavy contention."""
    return SubscriptionStateMachine(session_factory, max_retries=20, backoff_seconds=0.001)


@pytest.fixture
def dispatcher(session_factory, state_machine) -> WebhookDispatcher:
    """Dispatcher wired to the test database and test secrets."""
    verifier = SignatureVerifier(
        stripe_secret=STRIPE_SECRET, lemonsqueezy_secret=LEMONSQUEEZY_SECRET, tolerance=300
    )
    return WebhookDispatcher(
        session_factory, verifier=verifier, state_machine=state_machine, timeout_seconds=10
    )
