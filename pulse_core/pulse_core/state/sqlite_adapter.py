"""SQLite backend for local runs and the test suite.

Shares the ORM tables with PostgreSQL; only engine setup differs.  There is
no pool because SQLite allows a single writer, and the schema is created
on startup rather than by migrations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

_MEMORY = ":memory:"

_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA busy_timeout=5000",
)


def _apply_pragmas(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    try:
        for pragma in _PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def get_local_engine(db_path: Path | str = ".pulse/state.db") -> AsyncEngine:
    """Engine over the SQLite file at *db_path* (``":memory:"`` for a throwaway one).

    The file's parent directory is created if needed.
    """
    if str(db_path) == _MEMORY:
        url = f"sqlite+aiosqlite:///{_MEMORY}"
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine.sync_engine, "connect", _apply_pragmas)
    logger.info("SQLite engine ready at %s", db_path)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create any missing tables; existing ones are left untouched."""
    from pulse_core.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
