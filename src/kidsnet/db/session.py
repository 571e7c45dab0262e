"""Async SQLAlchemy engine and session factory for the access store.

The default store is a single SQLite file next to the service. File-backed
SQLite databases get their parent directory created and run in WAL mode so the
reconciliation loop can write while API requests read.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import event, make_url
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kidsnet.db.models import Base


def _sqlite_file(url: URL) -> Path | None:
    database = url.database
    if not database or database == ":memory:" or database.startswith("file:"):
        return None
    return Path(database)


def _enable_wal(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_async_engine_from_url(
    database_url: str,
    *,
    pool_timeout: int = 5,
    connect_timeout: int = 5,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///./kidsnet.db``.
        pool_timeout: Seconds to wait for a pooled connection (server databases).
        connect_timeout: SQLite busy timeout in seconds.
        echo: Log SQL statements.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_async_engine(database_url, echo=echo, pool_timeout=pool_timeout)

    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"timeout": connect_timeout},
    )
    db_file = _sqlite_file(url)
    if db_file is not None:
        db_file.parent.mkdir(parents=True, exist_ok=True)
        event.listen(engine.sync_engine, "connect", _enable_wal)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create the schedule, device cache, and audit tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
