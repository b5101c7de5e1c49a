"""
Async database engine and session factory.

Usage:
    from database.connection import get_async_session

    async with get_async_session() as session:
        result = await session.execute(select(Slot))
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    pool_size=10,
    max_overflow=10,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """
    Yield a session bound to the shared engine.

    The caller owns commit/rollback; the session is always closed on exit.
    """
    session = async_session_factory()
    try:
        yield session
    finally:
        await session.close()
