"""
Unit tests for core.pool module.

Tests:
- Configuration models (DatabaseConfig, PoolLimitsConfig, PoolRetryConfig)
- Password resolution from the environment
- connect() retry with backoff and close() idempotence
- Query methods retrying on connection-level errors only
- Transaction and acquire behaviour
"""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest
from pydantic import ValidationError

from chainmirror.core.exceptions import ConnectionPoolError
from chainmirror.core.pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    _json_encode,
)


# ============================================================================
# Configuration
# ============================================================================


class TestDatabaseConfig:
    """Connection parameters and password resolution."""

    def test_defaults(self):
        config = DatabaseConfig()
        assert config.host == "localhost"
        assert config.port == 5432
        assert config.database == "chainmirror"
        assert config.password.get_secret_value() == "test_password"

    def test_custom_env_var(self, monkeypatch):
        monkeypatch.setenv("MIRROR_PW", "other")
        config = DatabaseConfig(password_env="MIRROR_PW")
        assert config.password.get_secret_value() == "other"

    def test_missing_env_var(self, monkeypatch):
        monkeypatch.delenv("CHAINMIRROR_DB_PASSWORD")
        with pytest.raises(ValidationError, match="CHAINMIRROR_DB_PASSWORD environment variable"):
            DatabaseConfig()

    def test_password_hidden(self):
        assert "test_password" not in repr(DatabaseConfig())


class TestLimitsAndRetry:
    """Cross-field validation."""

    def test_max_below_min(self):
        with pytest.raises(ValidationError, match="max_size"):
            PoolLimitsConfig(min_size=5, max_size=2)

    def test_max_delay_below_initial(self):
        with pytest.raises(ValidationError, match="max_delay"):
            PoolRetryConfig(initial_delay=5.0, max_delay=1.0)

    def test_retry_delay_capped(self):
        pool = Pool(PoolConfig(retry=PoolRetryConfig(initial_delay=1.0, max_delay=3.0)))
        assert [pool._retry_delay(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]


class TestJsonEncode:
    """Document column encoding."""

    def test_dict(self):
        assert _json_encode({"a": 1}) == '{"a": 1}'

    def test_prebuilt_string_passthrough(self):
        assert _json_encode('{"a": 1}') == '{"a": 1}'


# ============================================================================
# Lifecycle
# ============================================================================


class TestConnect:
    """connect() and close()."""

    @pytest.fixture
    def pool(self) -> Pool:
        return Pool(PoolConfig(retry=PoolRetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0)))

    async def test_connect_success(self, pool):
        fake = MagicMock()
        with patch("chainmirror.core.pool.asyncpg.create_pool", new=AsyncMock(return_value=fake)):
            await pool.connect()
        assert pool.is_connected is True
        assert pool._pool is fake

    async def test_connect_is_idempotent(self, pool):
        create = AsyncMock(return_value=MagicMock())
        with patch("chainmirror.core.pool.asyncpg.create_pool", new=create):
            await pool.connect()
            await pool.connect()
        assert create.await_count == 1

    async def test_connect_retries_then_succeeds(self, pool):
        create = AsyncMock(side_effect=[OSError("refused"), MagicMock()])
        with patch("chainmirror.core.pool.asyncpg.create_pool", new=create):
            await pool.connect()
        assert create.await_count == 2
        assert pool.is_connected is True

    async def test_connect_exhausted(self, pool):
        create = AsyncMock(side_effect=OSError("refused"))
        with (
            patch("chainmirror.core.pool.asyncpg.create_pool", new=create),
            pytest.raises(ConnectionPoolError, match="after 3 attempts"),
        ):
            await pool.connect()
        assert pool.is_connected is False

    async def test_close(self, mock_pool, mock_asyncpg_pool):
        await mock_pool.close()
        mock_asyncpg_pool.close.assert_awaited_once()
        assert mock_pool.is_connected is False
        await mock_pool.close()

    async def test_context_manager(self, pool):
        fake = MagicMock()
        fake.close = AsyncMock()
        with patch("chainmirror.core.pool.asyncpg.create_pool", new=AsyncMock(return_value=fake)):
            async with pool as entered:
                assert entered is pool
                assert pool.is_connected
        fake.close.assert_awaited_once()

    def test_repr(self, mock_pool):
        assert repr(mock_pool) == "Pool(host=localhost, database=test_db, connected=True)"


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    """Query methods and retry policy."""

    def test_acquire_not_connected(self):
        with pytest.raises(RuntimeError, match="not connected"):
            Pool().acquire()

    async def test_fetch(self, mock_pool, mock_connection):
        mock_connection.fetch.return_value = [{"x": 1}]
        rows = await mock_pool.fetch("SELECT $1", 1, timeout=5.0)
        assert rows == [{"x": 1}]
        mock_connection.fetch.assert_awaited_once_with("SELECT $1", 1, timeout=5.0)

    async def test_fetchval(self, mock_pool, mock_connection):
        mock_connection.fetchval.return_value = 42
        assert await mock_pool.fetchval("SELECT count(*) FROM t") == 42

    async def test_execute(self, mock_pool, mock_connection):
        mock_connection.execute.return_value = "DELETE 3"
        assert await mock_pool.execute("DELETE FROM t") == "DELETE 3"

    async def test_retry_on_interface_error(self, mock_pool, mock_connection):
        mock_connection.fetch.side_effect = [asyncpg.InterfaceError("closed"), [{"x": 1}]]
        assert await mock_pool.fetch("SELECT 1") == [{"x": 1}]
        assert mock_connection.fetch.await_count == 2

    async def test_retry_exhausted(self, mock_pool, mock_connection):
        mock_connection.execute.side_effect = asyncpg.InterfaceError("closed")
        with pytest.raises(ConnectionPoolError, match="execute failed after 2 attempts"):
            await mock_pool.execute("DELETE FROM t")

    async def test_query_error_not_retried(self, mock_pool, mock_connection):
        mock_connection.execute.side_effect = asyncpg.PostgresError("syntax error")
        with pytest.raises(asyncpg.PostgresError):
            await mock_pool.execute("DELET FROM t")
        assert mock_connection.execute.await_count == 1

    async def test_transaction(self, mock_pool, mock_connection):
        async with mock_pool.transaction() as conn:
            assert conn is mock_connection
        mock_connection.transaction.assert_called_once()
