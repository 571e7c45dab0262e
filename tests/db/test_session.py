"""Tests for kidsnet.db.session — engine creation for file-backed SQLite."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import inspect, text

from kidsnet.db.session import create_async_engine_from_url, init_db


class TestFileDatabase:
    async def test_creates_parent_dir_and_tables(self, tmp_path: Path) -> None:
        db_file = tmp_path / "state" / "kidsnet.db"
        engine = create_async_engine_from_url(f"sqlite+aiosqlite:///{db_file}")
        try:
            await init_db(engine)
            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        finally:
            await engine.dispose()

        assert db_file.exists()
        assert {"schedule_config", "device_cache", "audit_log"} <= set(tables)

    async def test_wal_journal(self, tmp_path: Path) -> None:
        engine = create_async_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'kidsnet.db'}")
        try:
            async with engine.connect() as conn:
                mode = (await conn.execute(text("PRAGMA journal_mode"))).scalar_one()
        finally:
            await engine.dispose()

        assert mode.lower() == "wal"


class TestMemoryDatabase:
    async def test_in_memory_has_no_file(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        engine = create_async_engine_from_url("sqlite+aiosqlite:///:memory:")
        try:
            await init_db(engine)
        finally:
            await engine.dispose()

        assert list(tmp_path.iterdir()) == []
