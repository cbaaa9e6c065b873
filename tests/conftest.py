"""
Test fixtures for Delivery IQ tests.

Provides:
- In-memory SQLite engine with all tables (fresh per test)
- Session factory and a per-test session
- A classifier with the default thresholds pinned
"""

from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from deliveryiq.db.engine import Base
from deliveryiq.db.models import (  # noqa: F401 — register all models
    CareTicket,
    DeliveryOutcome,
    Shipment,
    SurvivalCurve,
)
from deliveryiq.engine.outcomes import OutcomeClassifier
from tests.factories import NOW

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test; StaticPool keeps one shared connection."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def classifier() -> OutcomeClassifier:
    return OutcomeClassifier(
        domestic_too_fresh_days=15,
        international_too_fresh_days=20,
        lost_timeout_days=45,
        international_zone_floor=10,
    )
