"""Integration test fixtures providing ephemeral PostgreSQL via testcontainers.

The PostgresContainer is session-scoped to avoid the Docker startup per test.
The mirror tables are dropped and recreated per test (function-scoped
``store`` fixture) for isolation.
"""

from __future__ import annotations

from pathlib import Path

import asyncpg
import pytest
from pydantic import SecretStr
from testcontainers.postgres import PostgresContainer

from chainmirror.core.gate import ConcurrencyGate, GateConfig
from chainmirror.core.pool import DatabaseConfig, Pool, PoolConfig
from chainmirror.core.store import BatchConfig, Store, StoreConfig


SQL_DIR = Path(__file__).parent.parent.parent / "deployments/postgres/init"


# ---------------------------------------------------------------------------
# Session-scoped container
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    """Spawn an ephemeral PostgreSQL 16 container for the test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_dsn(pg_container: PostgresContainer) -> dict[str, str | int]:
    """Extract connection parameters from the running container."""
    return {
        "host": pg_container.get_container_host_ip(),
        "port": int(pg_container.get_exposed_port(5432)),
        "database": pg_container.dbname,
        "user": pg_container.username,
        "password": pg_container.password,
    }


# ---------------------------------------------------------------------------
# Function-scoped Store with fresh tables
# ---------------------------------------------------------------------------


async def _reset_schema(dsn: dict[str, str | int]) -> None:
    conn = await asyncpg.connect(
        host=str(dsn["host"]),
        port=int(dsn["port"]),
        database=str(dsn["database"]),
        user=str(dsn["user"]),
        password=str(dsn["password"]),
    )
    try:
        await conn.execute("DROP SCHEMA public CASCADE")
        await conn.execute("CREATE SCHEMA public")
        for sql_file in sorted(SQL_DIR.glob("*.sql")):
            await conn.execute(sql_file.read_text())
    finally:
        await conn.close()


def _pool_config(dsn: dict[str, str | int]) -> PoolConfig:
    return PoolConfig(
        database=DatabaseConfig(
            host=str(dsn["host"]),
            port=int(dsn["port"]),
            database=str(dsn["database"]),
            user=str(dsn["user"]),
            password=SecretStr(str(dsn["password"])),
        ),
    )


@pytest.fixture
def store_config() -> StoreConfig:
    """Small batches so multi-batch writes are exercised."""
    return StoreConfig(batch=BatchConfig(max_size=3))


@pytest.fixture
async def store(pg_dsn: dict[str, str | int], store_config: StoreConfig):
    """Provide a connected Store backed by a real database with fresh tables."""
    await _reset_schema(pg_dsn)
    gate = ConcurrencyGate(GateConfig(max_concurrent_operations=4))
    async with Store(Pool(_pool_config(pg_dsn)), gate, store_config) as instance:
        yield instance
