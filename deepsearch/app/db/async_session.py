"""Engine and session plumbing for the chat store.

The default URL points at a local SQLite file through aiosqlite. Any other
SQLAlchemy async URL, such as ``postgresql+asyncpg://``, gets a sized
connection pool.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from deepsearch.app.core.config import settings
from deepsearch.app.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_async_engine(database_url: str | None = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    url = database_url or settings.database_url
    if url.lower().startswith("sqlite"):
        logger.info("Opening SQLite database")
        return create_async_engine(url)

    logger.info(
        f"Opening pooled database (pool_size={settings.db_pool_size}, "
        f"max_overflow={settings.db_max_overflow})"
    )
    return create_async_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


@lru_cache(maxsize=1)
def get_async_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_async_engine(), expire_on_commit=False, autoflush=False
    )


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session; the caller commits, the context closes it."""
    async with get_async_session_maker()() as session:
        yield session


async def init_async_db() -> None:
    """Create any missing tables. Runs at startup."""
    from deepsearch.app.db import models  # noqa: F401
    from deepsearch.app.db.base import Base

    async with get_async_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_async_engine() -> None:
    """Dispose of the pool and forget the cached engine and session maker."""
    await get_async_engine().dispose()
    get_async_engine.cache_clear()
    get_async_session_maker.cache_clear()
    logger.debug("Database engine disposed")
