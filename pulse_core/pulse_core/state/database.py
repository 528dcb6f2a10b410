"""Engine construction and unit-of-work helpers for the tenant store.

The URL scheme picks the backend: ``postgresql+asyncpg://`` in production,
``sqlite+aiosqlite://`` for local runs and tests.  Everything above this
module (repositories, ingestion, routers) is backend-agnostic apart from
:func:`savepoint` and the upsert helper in the repository module.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


def get_engine(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    statement_timeout_ms: int = 30_000,
) -> AsyncEngine:
    """Build the engine for *database_url*.

    Pool sizing and the server-side statement timeout only apply to
    PostgreSQL; SQLite URLs are handed to
    :func:`~pulse_core.state.sqlite_adapter.get_local_engine`.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        from pulse_core.state.sqlite_adapter import get_local_engine

        return get_local_engine(url.database or ":memory:")

    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={"server_settings": {"statement_timeout": str(statement_timeout_ms)}},
    )
    logger.info(
        "PostgreSQL engine ready host=%s db=%s pool=%d+%d",
        url.host,
        url.database,
        pool_size,
        max_overflow,
    )
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Tenant rows are read after commit when building responses.
    return async_sessionmaker(engine, expire_on_commit=False)


def dialect_name(session: AsyncSession) -> str:
    """Name of the dialect behind *session*, e.g. ``postgresql`` or ``sqlite``."""
    return session.get_bind().dialect.name


def savepoint(session: AsyncSession) -> AbstractAsyncContextManager[Any]:
    """Guard a statement that may hit a unique constraint.

    PostgreSQL aborts the enclosing transaction on any error, so the guarded
    statement runs inside ``SAVEPOINT``.  On SQLite the guard does nothing;
    a failed statement there leaves the transaction usable.
    """
    if dialect_name(session) == "postgresql":
        return session.begin_nested()
    return contextlib.nullcontext()


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on clean exit, roll back on error.

    Webhook deliveries, each tenant in a daily run, and each backfilled day
    get their own scope so one failure never discards another's writes.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()

