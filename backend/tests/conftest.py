"""
Shared test fixtures for Cryptex backend tests.

Provides reusable fixtures for:
- Async database sessions (in-memory SQLite)
- Users with and without demo account settings
- A patched latest-price lookup (no network)
"""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from cryptex.auth_routers.rate_limiters import reset_rate_limiters
from cryptex.cache import market_cache


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an in-memory async SQLite engine for testing."""
    from cryptex.models import Base

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_factory):
    """Provide an async database session for tests.

    Services commit on their own, so every test gets a fresh in-memory database.
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Global state
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def clear_shared_state():
    """Market cache and login rate limits are module-level singletons."""
    market_cache._entries.clear()
    reset_rate_limiters()
    yield
    market_cache._entries.clear()
    reset_rate_limiters()


# ---------------------------------------------------------------------------
# Sample data factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(db_session):
    """Factory: await make_user(email=..., role=...) -> committed User"""
    from cryptex.models import User

    async def _make_user(email="trader@cryptex.io", role="user", is_active=True, created_at=None):
        user = User(
            email=email,
            hashed_password="hashed",
            role=role,
            is_active=is_active,
            created_at=created_at or datetime.utcnow(),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
async def user(make_user):
    return await make_user()


@pytest.fixture
async def other_user(make_user):
    return await make_user(email="other@cryptex.io")


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@pytest.fixture
def latest_price():
    """Patch the exchange price lookup. Set .return_value or .side_effect per test."""
    with patch("cryptex.market_data.binance_client.get_latest_price", new_callable=AsyncMock) as mock:
        mock.return_value = 50000.0
        yield mock
