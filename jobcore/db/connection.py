"""
Engine and session lifecycle for the delayed_jobs store.

Worker and API processes call init_db() once at startup and close_db() at
shutdown. Every unit of work then runs in a session that commits on success
and rolls back on error; claims rely on that to release advisory locks.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from jobcore.config import get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """
    Return the process-wide engine, creating it on first use.

    Args:
        database_url: Used instead of settings.database_url when the engine
            does not exist yet.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            database_url or settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def get_test_engine(database_url: str) -> AsyncEngine:
    """Unpooled engine, so each test connection closes with its session."""
    return create_async_engine(database_url, poolclass=NullPool)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Rows are read after commit (claim snapshots, API responses).
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(database_url: str | None = None) -> None:
    """Create the engine and session factory for this process."""
    global _session_factory
    _session_factory = create_session_factory(get_engine(database_url))
    logger.info("Database connection initialized")


async def close_db() -> None:
    """Dispose of the engine. A later init_db() starts over."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
    logger.info("Database connection closed")


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Open a session that commits on exit and rolls back on error.

    Used by the poller, the periodic enqueuer and the producer.

    Raises:
        RuntimeError: If init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """FastAPI dependency wrapping get_session_context()."""
    async with get_session_context() as session:
        yield session
