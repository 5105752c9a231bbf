"""Tests for database engine and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

from backend.database import ensure_sqlite_directory

if TYPE_CHECKING:
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncSession


class TestDatabase:
    async def test_session_works(self, db_session: AsyncSession) -> None:
        result = await db_session.execute(text("SELECT 42"))
        assert result.scalar() == 42

    async def test_schema_is_created(self, app: FastAPI) -> None:
        async with app.state.engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        assert {
            "users",
            "api_keys",
            "assets",
            "asset_versions",
            "user_machines",
            "machine_sync_states",
        } <= set(tables)

    async def test_foreign_keys_are_enforced(self, app: FastAPI) -> None:
        async with app.state.engine.connect() as conn:
            result = await conn.execute(text("PRAGMA foreign_keys"))
            assert result.scalar() == 1

    def test_sqlite_directory_is_created(self, tmp_path: Path) -> None:
        ensure_sqlite_directory(f"sqlite+aiosqlite:///{tmp_path}/nested/dir/app.db")
        assert (tmp_path / "nested" / "dir").is_dir()

    def test_memory_database_needs_no_directory(self) -> None:
        ensure_sqlite_directory("sqlite+aiosqlite:///:memory:")
