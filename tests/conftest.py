"""
Pytest configuration and shared fixtures for chainmirror tests.

Provides:
- Mock fixtures for asyncpg connections, the local Pool, and the Store
- A shared ConcurrencyGate and an upstream connection factory for the executor
- Isolation of process-wide state (job identity set, password env vars)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from chainmirror.core.base_job import BaseJob
from chainmirror.core.executor import ResilientQueryExecutor, SourceConfig, SourcesConfig
from chainmirror.core.gate import ConcurrencyGate, GateConfig
from chainmirror.core.pool import DatabaseConfig, Pool, PoolConfig, PoolRetryConfig
from chainmirror.core.retry_queue import FailedBatchRetryQueue, RetryQueueConfig
from chainmirror.core.store import Store


# ============================================================================
# Logging and Process State
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def password_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Provide the passwords every DatabaseConfig resolves from the environment."""
    monkeypatch.setenv("CHAINMIRROR_DB_PASSWORD", "test_password")
    monkeypatch.setenv("CHAINMIRROR_SOURCE_PASSWORD", "source_password")


@pytest.fixture(autouse=True)
def reset_job_identities() -> Iterator[None]:
    """Clear the process-wide running-job set between tests."""
    BaseJob._running.clear()
    yield
    BaseJob._running.clear()


# ============================================================================
# Local Store Mocks
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=0)
    conn.execute = AsyncMock(return_value="OK")
    conn.close = AsyncMock()

    # Mock transaction context manager
    mock_transaction = MagicMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=conn)
    mock_transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=mock_transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Create a mock asyncpg pool."""
    pool = MagicMock()
    pool.close = AsyncMock()

    # Mock acquire context manager
    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)

    return pool


@pytest.fixture
def mock_pool(mock_asyncpg_pool: MagicMock, mock_connection: MagicMock) -> Pool:
    """Create a connected Pool with mocked internals."""
    config = PoolConfig(
        database=DatabaseConfig(host="localhost", port=5432, database="test_db", user="test_user"),
        retry=PoolRetryConfig(max_attempts=2, initial_delay=0.0, max_delay=0.0),
    )
    pool = Pool(config=config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True

    # Store mock connection for easy access in tests
    pool._mock_connection = mock_connection  # type: ignore[attr-defined]

    return pool


@pytest.fixture
def gate() -> ConcurrencyGate:
    return ConcurrencyGate(GateConfig(max_concurrent_operations=4))


@pytest.fixture
def store(mock_pool: Pool, gate: ConcurrencyGate) -> Store:
    """A real Store over the mocked pool."""
    return Store(pool=mock_pool, gate=gate)


@pytest.fixture
def mock_store() -> MagicMock:
    """A fully mocked Store for job-level tests."""
    store = MagicMock(spec=Store)
    store.fetch_keys = AsyncMock(return_value=[])
    store.refresh = AsyncMock(side_effect=lambda spec, records: len(records))
    store.upsert = AsyncMock(side_effect=lambda spec, records: len(records))
    store.table_stats = AsyncMock(return_value={})
    return store


# ============================================================================
# Upstream Mocks
# ============================================================================


class FakeSource:
    """Scripted upstream source: each ``fetch`` pops the next outcome.

    An outcome is a list of rows (dicts) or an exception instance to raise.
    When the script runs out, the last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes) or [[]]
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:
        self.calls.append((query, args))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


@pytest.fixture
def fake_sources() -> dict[str, FakeSource]:
    """Scripted sources by name; tests assign ``FakeSource`` instances."""
    return {}


@pytest.fixture
def connector(fake_sources: dict[str, FakeSource]) -> AsyncMock:
    """Executor connector returning a mock connection backed by ``fake_sources``."""

    async def connect(source: SourceConfig, config: SourcesConfig) -> MagicMock:
        fake = fake_sources[source.name]
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=fake.fetch)
        conn.close = AsyncMock()
        return conn

    return AsyncMock(side_effect=connect)


@pytest.fixture
def sources_config() -> SourcesConfig:
    """Two sources, no backoff delays."""
    return SourcesConfig(
        sources=[SourceConfig(name="primary"), SourceConfig(name="secondary", host="db2")],
        failover_order=["primary", "secondary"],
        max_retries=3,
        retry_delay=0.0,
    )


@pytest.fixture
def executor(
    sources_config: SourcesConfig, gate: ConcurrencyGate, connector: AsyncMock
) -> ResilientQueryExecutor:
    return ResilientQueryExecutor(sources_config, gate, connector=connector)


@pytest.fixture
def retry_queue() -> FailedBatchRetryQueue:
    """Retry queue without backoff delays."""
    return FailedBatchRetryQueue(RetryQueueConfig(base_delay=0.0, max_delay=0.0, interval=1.0))
