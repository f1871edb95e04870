"""
Async PostgreSQL connection pool for the local store, built on asyncpg.

Manages a bounded pool of connections to the local mirror database with
retry-with-backoff on startup, transactional context managers, and JSON
codecs so opaque document columns can be written as dicts or as
pre-serialized strings.

Query methods ([fetch()][chainmirror.core.pool.Pool.fetch],
[fetchval()][chainmirror.core.pool.Pool.fetchval],
[execute()][chainmirror.core.pool.Pool.execute]) retry on connection-level
errors only (``InterfaceError``, ``ConnectionDoesNotExistError``). Query-level
errors such as constraint violations propagate on the first attempt.

Examples:
    ```python
    pool = Pool.from_yaml("config/chainmirror.yaml")

    async with pool:
        count = await pool.fetchval("SELECT count(*) FROM md_pool_list")

        async with pool.transaction() as conn:
            await conn.execute("DELETE FROM md_pool_list")
    ```

See Also:
    [Store][chainmirror.core.store.Store]: Write-path facade that owns a pool.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator  # noqa: TC003
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Literal, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator, model_validator

from .exceptions import ConnectionPoolError
from .logger import Logger
from .yaml import load_yaml


def _json_encode(value: Any) -> str:
    """Encode a value for a JSON/JSONB column.

    Upstream sources return document columns as already-serialized text;
    those pass through unchanged so they are not double-encoded.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value)


async def _init_connection(conn: asyncpg.Connection[asyncpg.Record]) -> None:
    """Register JSON/JSONB codecs on every new pool connection."""
    for type_name in ("jsonb", "json"):
        await conn.set_type_codec(
            type_name,
            encoder=_json_encode,
            decoder=json.loads,
            schema="pg_catalog",
        )


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters.

    The password is read from the environment variable named by
    ``password_env``, never from configuration files.

    Warning:
        ``password`` is a ``SecretStr`` and never appears in string
        representations. The environment variable must be set before the
        model is constructed.
    """

    host: str = Field(default="localhost", min_length=1, description="Database hostname")
    port: int = Field(default=5432, ge=1, le=65535, description="Database port")
    database: str = Field(default="chainmirror", min_length=1, description="Database name")
    user: str = Field(default="chainmirror", min_length=1, description="Database user")
    password_env: str = Field(
        default="CHAINMIRROR_DB_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable name for database password",
    )
    password: SecretStr = Field(description="Database password (loaded from password_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Resolve the password from the configured environment variable."""
        if isinstance(data, dict) and "password" not in data:
            env_var = data.get("password_env", cls.model_fields["password_env"].default)
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "password": SecretStr(value)}
        return data


class PoolLimitsConfig(BaseModel):
    """Connection pool size and recycling limits.

    Note:
        ``max_size`` should be at least the concurrency gate size so that a
        full gate never waits on pool acquisition.
    """

    min_size: int = Field(default=2, ge=1, le=100, description="Minimum connections")
    max_size: int = Field(default=10, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle timeout (seconds)"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        """Ensure max_size >= min_size."""
        min_size = info.data.get("min_size", 2)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolRetryConfig(BaseModel):
    """Backoff for connection attempts: ``initial_delay * 2^attempt``, capped."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Max retry attempts")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Initial retry delay")
    max_delay: float = Field(default=10.0, ge=0.0, description="Maximum retry delay")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class PoolConfig(BaseModel):
    """Aggregate configuration for the local store connection pool."""

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    acquisition_timeout: float = Field(
        default=10.0, ge=0.1, description="Connection acquisition timeout (seconds)"
    )
    application_name: str = Field(default="chainmirror", description="Application name")
    statement_timeout: int = Field(
        default=300_000, ge=0, description="Server-side statement timeout in ms (0=unlimited)"
    )


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Async PostgreSQL connection pool manager for the local store.

    Created disconnected; call [connect()][chainmirror.core.pool.Pool.connect]
    or use it as an async context manager.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected: bool = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        """Create a Pool from the ``pool`` section of a YAML file."""
        return cls.from_dict(load_yaml(config_path).get("pool", {}))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        """Create a Pool from a dictionary matching [PoolConfig][chainmirror.core.pool.PoolConfig]."""
        return cls(config=PoolConfig(**config_dict))

    def _retry_delay(self, attempt: int) -> float:
        retry = self._config.retry
        return float(min(retry.initial_delay * (2**attempt), retry.max_delay))

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff on failure.

        Raises:
            ConnectionPoolError: If every attempt fails.
        """
        async with self._connection_lock:
            if self._is_connected:
                return

            db = self._config.database
            attempts = self._config.retry.max_attempts
            self._logger.info(
                "connection_starting", host=db.host, port=db.port, database=db.database
            )

            for attempt in range(attempts):
                try:
                    self._pool = await asyncpg.create_pool(
                        host=db.host,
                        port=db.port,
                        database=db.database,
                        user=db.user,
                        password=db.password.get_secret_value(),
                        min_size=self._config.limits.min_size,
                        max_size=self._config.limits.max_size,
                        max_queries=self._config.limits.max_queries,
                        max_inactive_connection_lifetime=self._config.limits.max_inactive_connection_lifetime,
                        timeout=self._config.acquisition_timeout,
                        init=_init_connection,
                        server_settings={
                            "application_name": self._config.application_name,
                            "statement_timeout": str(self._config.statement_timeout),
                        },
                    )
                except (asyncpg.PostgresError, OSError, ConnectionError) as e:
                    if attempt + 1 >= attempts:
                        self._logger.error("connection_failed", attempts=attempt + 1, error=str(e))
                        raise ConnectionPoolError(
                            f"Failed to connect after {attempt + 1} attempts: {e}"
                        ) from e
                    delay = self._retry_delay(attempt)
                    self._logger.warning(
                        "connection_retry", attempt=attempt + 1, delay_s=delay, error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    self._is_connected = True
                    self._logger.info("connection_established")
                    return

    async def close(self) -> None:
        """Close the pool. Idempotent; always resets internal state."""
        async with self._connection_lock:
            if self._pool is not None:
                try:
                    await self._pool.close()
                    self._logger.info("connection_closed")
                finally:
                    self._pool = None
                    self._is_connected = False

    # -------------------------------------------------------------------------
    # Connection Acquisition
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection; it returns to the pool when the context exits.

        Raises:
            RuntimeError: If the pool has not been connected yet.
        """
        if not self._is_connected or self._pool is None:
            raise RuntimeError("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Acquire a connection inside a transaction.

        Commits on normal exit and rolls back if an exception escapes.
        """
        async with self.acquire() as conn, conn.transaction():
            yield conn

    # -------------------------------------------------------------------------
    # Query Methods (with retry for transient connection errors)
    # -------------------------------------------------------------------------

    async def _execute_with_retry(
        self,
        operation: Literal["fetch", "fetchval", "execute"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
    ) -> Any:
        """Run a connection method, retrying on connection-level errors.

        Each attempt acquires a fresh connection, so a socket broken
        mid-query is not reused.

        Raises:
            ConnectionPoolError: If every attempt hits a connection error.
        """
        attempts = self._config.retry.max_attempts
        for attempt in range(attempts):
            try:
                async with self.acquire() as conn:
                    return await getattr(conn, operation)(query, *args, timeout=timeout)
            except (asyncpg.InterfaceError, asyncpg.ConnectionDoesNotExistError) as e:
                if attempt + 1 >= attempts:
                    self._logger.error(
                        "query_failed", operation=operation, attempts=attempts, error=str(e)
                    )
                    raise ConnectionPoolError(
                        f"{operation} failed after {attempts} attempts: {e}"
                    ) from e
                delay = self._retry_delay(attempt)
                self._logger.warning(
                    "query_retry",
                    operation=operation,
                    attempt=attempt + 1,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
        raise RuntimeError("Unexpected state in _execute_with_retry")

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Execute a query and return all rows."""
        return cast("list[asyncpg.Record]", await self._execute_with_retry("fetch", query, args, timeout))

    async def fetchval(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any:
        """Execute a query and return the first column of the first row."""
        return await self._execute_with_retry("fetchval", query, args, timeout)

    async def execute(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> str:
        """Execute a statement and return its status tag (e.g. ``"DELETE 42"``)."""
        return cast("str", await self._execute_with_retry("execute", query, args, timeout))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Whether the pool has an active connection to the database."""
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        """The pool configuration (read-only)."""
        return self._config

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
