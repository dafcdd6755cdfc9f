# tests/infra/test_database.py
"""
Тесты менеджера PostgreSQL: ретраи, транзакции, применение схемы.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.infra.database import (
    SCHEMA_LOCK_KEY,
    DatabaseManager,
    apply_schema_file,
    retry_on_connection_error,
)


class _Connection:
    """Соединение, которое записывает всё, что с ним делают."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    @asynccontextmanager
    async def transaction(self):
        self.events.append("begin")
        try:
            yield
        except Exception:
            self.events.append("rollback")
            raise
        self.events.append("commit")

    async def execute(self, query: str, *args: Any) -> str:
        self.events.append(("execute", query, args))
        return "OK"

    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        return 1


class _Pool:

    def __init__(self, connection: _Connection) -> None:
        self.connection = connection
        self.close = AsyncMock()

    @asynccontextmanager
    async def acquire(self):
        yield self.connection


@pytest.fixture
def connection() -> _Connection:
    return _Connection()


@pytest.fixture
def db(connection: _Connection) -> DatabaseManager:
    DatabaseManager._instance = None
    manager = DatabaseManager()
    manager._pool = _Pool(connection)
    return manager


class TestRetryOnConnectionError:

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self) -> None:
        calls = MagicMock(side_effect=[ConnectionRefusedError("refused"), "ok"])

        @retry_on_connection_error(max_attempts=3, delay=0.5)
        async def query() -> str:
            return calls()

        with patch("src.infra.database.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await query() == "ok"

        assert calls.call_count == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        calls = MagicMock(side_effect=OSError("network down"))

        @retry_on_connection_error(max_attempts=3, delay=0.1)
        async def query() -> None:
            calls()

        with patch("src.infra.database.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(OSError, match="network down"):
                await query()

        assert calls.call_count == 3

    @pytest.mark.asyncio
    async def test_query_errors_not_retried(self) -> None:
        calls = MagicMock(side_effect=ValueError("constraint"))

        @retry_on_connection_error(max_attempts=3, delay=0.1)
        async def query() -> None:
            calls()

        with pytest.raises(ValueError):
            await query()

        assert calls.call_count == 1


class TestDatabaseManager:

    def test_pool_not_initialized(self) -> None:
        DatabaseManager._instance = None
        manager = DatabaseManager()

        assert manager.is_connected is False
        with pytest.raises(RuntimeError, match="Пул соединений не инициализирован"):
            _ = manager.pool

    @pytest.mark.asyncio
    async def test_connect_creates_pool(self) -> None:
        DatabaseManager._instance = None
        manager = DatabaseManager()
        pool = MagicMock()

        with patch("src.infra.database.asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create_pool:
            await manager.connect("postgresql://u:p@db/shop", min_size=1, max_size=4, command_timeout=5)
            await manager.connect("postgresql://u:p@db/shop")

        create_pool.assert_awaited_once_with(
            dsn="postgresql://u:p@db/shop", min_size=1, max_size=4, command_timeout=5
        )
        assert manager.pool is pool

    @pytest.mark.asyncio
    async def test_transaction_commits(self, db: DatabaseManager, connection: _Connection) -> None:
        async with db.transaction() as conn:
            await conn.execute("UPDATE users SET balance = balance + $1", 10)

        assert connection.events[0] == "begin"
        assert connection.events[-1] == "commit"

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, db: DatabaseManager, connection: _Connection) -> None:
        with pytest.raises(RuntimeError):
            async with db.transaction() as conn:
                await conn.execute("UPDATE users SET balance = 0")
                raise RuntimeError("boom")

        assert connection.events[-1] == "rollback"
        assert "commit" not in connection.events

    @pytest.mark.asyncio
    async def test_health_check(self, db: DatabaseManager) -> None:
        assert await db.health_check() is True

        db._pool = None
        assert await db.health_check() is False

    @pytest.mark.asyncio
    async def test_disconnect(self, db: DatabaseManager) -> None:
        pool = db.pool

        await db.disconnect()

        pool.close.assert_awaited_once()
        assert db.is_connected is False


class TestApplySchema:

    @pytest.mark.asyncio
    async def test_lock_taken_inside_transaction(self, db: DatabaseManager, connection: _Connection) -> None:
        """Advisory lock берётся в той же транзакции, что и применение схемы."""
        await apply_schema_file(db)

        assert connection.events[0] == "begin"
        assert connection.events[1] == ("execute", "SELECT pg_advisory_xact_lock($1)", (SCHEMA_LOCK_KEY,))
        _, schema_sql, _ = connection.events[2]
        assert "CREATE TABLE IF NOT EXISTS" in schema_sql
        assert connection.events[3] == "commit"
