"""Async engine and session factory for the ledger database.

The URL comes from ``DB_URL``: Neon/Postgres with pgvector in deployment,
SQLite (aiosqlite) for local tests.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseSettings, settings


def engine_options(config: DatabaseSettings) -> dict[str, Any]:
    """Engine keyword arguments for ``config``.

    Pool sizing only applies to server databases; SQLite uses its own pool.
    """
    options: dict[str, Any] = {"echo": config.echo}
    if not config.url.startswith("sqlite"):
        options.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_pre_ping=True,
        )
    return options


engine: AsyncEngine = create_async_engine(settings.db.url, **engine_options(settings.db))

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; uncommitted work is rolled back on error.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """
    async with AsyncSessionMaker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
