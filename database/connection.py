"""
Database connection management.

Provides the shared async engine and session helpers:
- get_async_session(): async context manager for services and workers
- get_db_session(): FastAPI dependency yielding one session per request
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import get_settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    get_settings().DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

# expire_on_commit=False keeps attributes readable after commit for post-commit publishing
AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a session and roll back on error.

    Callers commit explicitly; anything left uncommitted is discarded on close.

    Example:
        >>> async with get_async_session() as session:
        ...     result = await session.execute(select(Schedule))
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request."""
    async with get_async_session() as session:
        yield session
