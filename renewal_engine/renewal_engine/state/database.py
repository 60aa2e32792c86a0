"""Engine and session helpers for the renewals store.

``sqlite+aiosqlite://`` URLs go through :mod:`renewal_engine.state.sqlite_adapter`;
anything else (normally ``postgresql+asyncpg://``) gets a pooled engine.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


def get_engine(database_url: str, pool_size: int = 10, max_overflow: int = 20) -> AsyncEngine:
    """Create the engine for *database_url*.

    The pool settings only apply to server databases.
    """
    if database_url.startswith("sqlite"):
        from renewal_engine.state.sqlite_adapter import get_local_engine

        _, _, db_path = database_url.partition("///")
        return get_local_engine(db_path or ":memory:")

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )
    logger.info("Connected renewals store pool_size=%d max_overflow=%d", pool_size, max_overflow)
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded rows readable after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on clean exit and rolls back on error."""
    async with get_session_factory(engine)() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
