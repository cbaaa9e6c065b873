"""FastAPI dependencies for Delivery IQ routes."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from deliveryiq.db.engine import get_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide a read session per request."""
    factory = get_session_factory()
    async with factory() as session:
        yield session
