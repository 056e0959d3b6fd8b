"""Tests for engine options and session lifecycle helpers."""

from __future__ import annotations

import pytest

from unic import database

pytestmark = pytest.mark.asyncio


class TestEngineOptions:
    """Test backend-specific engine arguments."""

    def test_postgres_pool(self):
        options = database.engine_options("postgresql+asyncpg://u:p@db/unic")
        assert options["pool_size"] == 20
        assert options["connect_args"] == {"statement_cache_size": 0}

    def test_sqlite_has_no_pool_sizing(self):
        options = database.engine_options("sqlite+aiosqlite:///./unic.db")
        assert "pool_size" not in options
        assert options["connect_args"] == {"check_same_thread": False}


class TestLifecycle:
    async def test_not_initialized(self):
        with pytest.raises(RuntimeError, match="init_db"):
            database.get_session_factory()

    async def test_init_and_close(self):
        await database.init_db("sqlite+aiosqlite://")
        try:
            async with database.session_scope() as session:
                assert session.bind is database.get_engine()
        finally:
            await database.close_db()
        with pytest.raises(RuntimeError):
            database.get_engine()
