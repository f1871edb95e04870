"""
Resilient multi-source query executor with circuit breaking.

Runs one logical read-only query against an ordered list of interchangeable
upstream PostgreSQL sources (e.g. ``primary``, ``backup1``, ``backup2``):

1. Candidates are the configured failover order minus sources whose circuit
   is open. If every circuit is open the primary is attempted anyway.
2. Each candidate gets ``max_retries`` attempts, each inside the shared
   [ConcurrencyGate][chainmirror.core.gate.ConcurrencyGate] and each on a
   fresh connection with its own connect and command timeouts. Attempts are
   separated by ``retry_delay * 2^(attempt-1)``.
3. Retriable errors (see [is_retriable()][chainmirror.core.executor.is_retriable])
   continue the loop. Anything else is fatal for that source: its remaining
   attempts are skipped and the error is wrapped in a
   [QueryError][chainmirror.core.exceptions.QueryError].
4. A success resets the source's failure count. A candidate that runs out
   of attempts or fails fatally records one circuit failure, and the next
   candidate is tried after ``retry_delay``.
5. When every candidate is exhausted,
   [SourcesUnavailableError][chainmirror.core.exceptions.SourcesUnavailableError]
   is raised carrying the last error.

Results are always complete: rows are fetched and mapped inside a single
attempt, so a failure never leaks a partial result.

Examples:
    ```python
    executor = ResilientQueryExecutor(config, gate=gate)
    pools = await executor.execute(
        "SELECT * FROM grest.pool_delegators($1) ORDER BY amount DESC",
        ("pool1abc...",),
    )
    ```
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypeVar

import asyncpg
from pydantic import BaseModel, Field, model_validator

from chainmirror.models.constants import CircuitState

from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .exceptions import ConfigurationError, QueryError, SourcesUnavailableError
from .gate import ConcurrencyGate
from .logger import Logger
from .metrics import SOURCE_HEALTHY, SOURCE_RESPONSE_SECONDS
from .pool import DatabaseConfig


T = TypeVar("T")

RowMapper = Callable[[asyncpg.Record], T]
Connector = Callable[["SourceConfig", "SourcesConfig"], Awaitable[asyncpg.Connection]]


# ---------------------------------------------------------------------------
# Error Classification
# ---------------------------------------------------------------------------

_RETRIABLE_TYPES: Final[tuple[type[BaseException], ...]] = (
    TimeoutError,
    OSError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
    asyncpg.TooManyConnectionsError,
    asyncpg.CannotConnectNowError,
    asyncpg.QueryCanceledError,
    asyncpg.AdminShutdownError,
    asyncpg.CrashShutdownError,
)

_RETRIABLE_MARKERS: Final[tuple[str, ...]] = (
    "too many clients",
    "server_login_retry",
    "timeout",
    "connection",
    "network",
    "08p01",
    "57014",
    "canceling statement due to user request",
    "query was cancelled",
)


def is_retriable(error: BaseException) -> bool:
    """Whether ``error`` is a transient transport failure worth retrying.

    Timeouts, socket errors, connection-class server errors (SQLSTATE 08),
    too-many-connections, server restarts, cancelled statements, and any
    error whose message names one of the known transient conditions are
    retriable. Everything else (syntax errors, constraint violations, row
    mapping failures) is fatal.
    """
    if isinstance(error, _RETRIABLE_TYPES):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RETRIABLE_MARKERS)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class SourceConfig(DatabaseConfig):
    """One named upstream data source.

    Inherits the connection fields of
    [DatabaseConfig][chainmirror.core.pool.DatabaseConfig]; the password is
    read from ``password_env``. Timeouts left unset fall back to the
    executor-wide values.
    """

    name: str = Field(min_length=1, description="Source identity used in failover_order")
    password_env: str = Field(
        default="CHAINMIRROR_SOURCE_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable name for the source password",
    )
    connection_timeout: float | None = Field(
        default=None, gt=0.0, description="Override of the connect timeout (seconds)"
    )
    command_timeout: float | None = Field(
        default=None, gt=0.0, description="Override of the per-query timeout (seconds)"
    )


class SourcesConfig(BaseModel):
    """Upstream sources, failover policy, and per-attempt retry budget."""

    sources: list[SourceConfig] = Field(default_factory=list)
    failover_order: list[str] = Field(
        default_factory=list,
        description="Source names in failover order (default: declaration order)",
    )
    enable_failover: bool = Field(
        default=True, description="Try later sources when the first is exhausted"
    )
    max_retries: int = Field(default=3, ge=1, le=10, description="Attempts per source")
    retry_delay: float = Field(
        default=1.0, ge=0.0, description="Base backoff and failover delay (seconds)"
    )
    connection_timeout: float = Field(default=30.0, gt=0.0, description="Connect timeout")
    command_timeout: float = Field(default=60.0, gt=0.0, description="Per-query timeout")
    schema_name: str = Field(
        default="grest", pattern=r"^[a-z_][a-z0-9_]*$", description="Schema of upstream functions"
    )
    application_name: str = Field(default="chainmirror", description="Reported application name")
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @model_validator(mode="after")
    def validate_failover_order(self) -> SourcesConfig:
        """Ensure source names are unique and failover_order references them."""
        names = [s.name for s in self.sources]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate source names: {names}")
        unknown = [n for n in self.failover_order if n not in names]
        if unknown:
            raise ValueError(f"failover_order references unknown sources: {unknown}")
        if len(set(self.failover_order)) != len(self.failover_order):
            raise ValueError("failover_order contains duplicates")
        return self

    def ordered_sources(self) -> list[SourceConfig]:
        """Sources in failover order; sources missing from the order are appended."""
        by_name = {s.name: s for s in self.sources}
        ordered = [by_name[n] for n in self.failover_order]
        ordered.extend(s for s in self.sources if s.name not in self.failover_order)
        return ordered


async def connect_source(source: SourceConfig, config: SourcesConfig) -> asyncpg.Connection:
    """Open a dedicated connection to ``source`` honouring its timeouts."""
    return await asyncpg.connect(
        host=source.host,
        port=source.port,
        database=source.database,
        user=source.user,
        password=source.password.get_secret_value(),
        timeout=source.connection_timeout or config.connection_timeout,
        command_timeout=source.command_timeout or config.command_timeout,
        server_settings={"application_name": config.application_name},
    )


_FUNCTION_COUNT: Final = """
    SELECT count(DISTINCT routine_name)
    FROM information_schema.routines
    WHERE routine_schema = $1 AND routine_name = ANY($2::text[])
"""


@dataclass(frozen=True, slots=True)
class SourceHealth:
    """Result of one active health check against an upstream source.

    Attributes:
        source: Source name.
        healthy: Reachable, and every required function exists.
        response_time: ``SELECT 1`` round trip in seconds, if it connected.
        current_schema: ``current_schema()`` of the session.
        functions_found: Required functions present in the configured schema.
        functions_required: Number of required functions checked.
        error: Why the check failed, if it did.
    """

    source: str
    healthy: bool
    response_time: float | None = None
    current_schema: str | None = None
    functions_found: int = 0
    functions_required: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ResilientQueryExecutor:
    """Executes read-only queries with retry, failover, and circuit breaking.

    Args:
        config: Sources and retry policy.
        gate: Process-wide gate every attempt is wrapped in.
        circuit_breaker: Shared source health registry. A private one is
            built from ``config.circuit_breaker`` when omitted.
        connector: Coroutine opening a connection to a source. Defaults to
            [connect_source()][chainmirror.core.executor.connect_source].

    Raises:
        ConfigurationError: If no source is configured.
    """

    def __init__(
        self,
        config: SourcesConfig,
        gate: ConcurrencyGate,
        circuit_breaker: CircuitBreakerRegistry | None = None,
        *,
        connector: Connector | None = None,
    ) -> None:
        if not config.sources:
            raise ConfigurationError("at least one upstream source must be configured")
        self._config = config
        self._gate = gate
        self._circuit = circuit_breaker or CircuitBreakerRegistry(config.circuit_breaker)
        self._connector = connector or connect_source
        self._logger = Logger("executor")

    @property
    def config(self) -> SourcesConfig:
        return self._config

    @property
    def circuit_breaker(self) -> CircuitBreakerRegistry:
        return self._circuit

    @property
    def schema_name(self) -> str:
        """Schema holding the upstream query functions."""
        return self._config.schema_name

    def candidates(self) -> list[SourceConfig]:
        """Sources to try for the next call, in order.

        Open circuits are skipped. If that leaves nothing, the primary is
        returned alone. With failover disabled only the first candidate is
        kept.
        """
        ordered = self._config.ordered_sources()
        eligible = []
        for source in ordered:
            if self._circuit.is_open(source.name):
                self._logger.debug("source_skipped_open", source=source.name)
                continue
            eligible.append(source)

        if not eligible:
            self._logger.warning("all_sources_open", primary=ordered[0].name)
            eligible = ordered[:1]

        if not self._config.enable_failover:
            return eligible[:1]
        return eligible

    async def execute(
        self,
        query: str,
        params: Sequence[Any] = (),
        row_mapper: RowMapper[T] | None = None,
    ) -> list[T]:
        """Run ``query`` on the first healthy source and return mapped rows.

        Args:
            query: SQL with ``$1``, ``$2`` placeholders.
            params: Positional query parameters.
            row_mapper: Converts each ``asyncpg.Record``. Defaults to ``dict``.

        Returns:
            Every row of the result, in the order the query defines.

        Raises:
            SourcesUnavailableError: When every candidate is exhausted or
                failed fatally. A fatal failure surfaces as a
                ``QueryError`` in ``last_error``.
        """
        mapper: RowMapper[Any] = row_mapper or dict
        candidates = self.candidates()
        last_error: BaseException | None = None
        attempted: list[str] = []

        for index, source in enumerate(candidates):
            attempted.append(source.name)
            try:
                rows = await self._run_on_source(source, query, tuple(params), mapper)
            except Exception as e:  # fatal, or retriable after every attempt
                last_error = e
                failures = self._circuit.record_failure(source.name)
                self._logger.error(
                    "source_exhausted",
                    source=source.name,
                    fatal=isinstance(e, QueryError),
                    failures=failures,
                    error=str(e),
                )
                if index + 1 < len(candidates) and self._config.retry_delay > 0:
                    await asyncio.sleep(self._config.retry_delay)
                continue

            if self._circuit.state(source.name) is not CircuitState.CLOSED:
                self._logger.info("source_recovered", source=source.name)
            self._circuit.record_success(source.name)
            if index > 0:
                self._logger.info("failover_succeeded", source=source.name, attempted=attempted)
            return rows

        raise SourcesUnavailableError(
            f"all sources unavailable after trying {attempted}: {last_error}",
            last_error=last_error,
            attempted=tuple(attempted),
        ) from last_error

    async def _run_on_source(
        self,
        source: SourceConfig,
        query: str,
        params: tuple[Any, ...],
        mapper: RowMapper[T],
    ) -> list[T]:
        """Retry ``query`` on one source.

        Re-raises the final retriable error, or a ``QueryError`` chained to
        the first fatal one, which ends this source's attempts at once.
        """
        attempts = self._config.max_retries
        attempt_once = functools.partial(self._attempt, source, query, params, mapper)
        for attempt in range(1, attempts + 1):
            try:
                return await self._gate.with_gate(attempt_once)
            except Exception as e:
                if not is_retriable(e):
                    self._logger.error(
                        "query_fatal", source=source.name, error=str(e), error_type=type(e).__name__
                    )
                    raise QueryError(f"query failed on source {source.name}: {e}") from e
                if attempt >= attempts:
                    raise
                delay = self._config.retry_delay * (2 ** (attempt - 1))
                self._logger.warning(
                    "source_retry",
                    source=source.name,
                    attempt=attempt,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
        raise RuntimeError("Unexpected state in _run_on_source")

    async def _attempt(
        self,
        source: SourceConfig,
        query: str,
        params: tuple[Any, ...],
        mapper: RowMapper[T],
    ) -> list[T]:
        conn = await self._connector(source, self._config)
        try:
            records = await conn.fetch(
                query, *params, timeout=source.command_timeout or self._config.command_timeout
            )
            return [mapper(record) for record in records]
        finally:
            await conn.close()

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def check_health(self, required_functions: Sequence[str] = ()) -> list[SourceHealth]:
        """Actively check every configured source, in failover order.

        Each check holds one gate permit and a fresh connection, times a
        ``SELECT 1``, reads ``current_schema()``, and counts which of
        ``required_functions`` exist in the configured schema. Checks never
        touch the circuit registry; a failing source is reported, not raised.
        The ``source_healthy`` and ``source_response_seconds`` gauges are
        updated per source.
        """
        required = tuple(required_functions)
        results: list[SourceHealth] = []
        for source in self._config.ordered_sources():
            check = functools.partial(self._check_source, source, required)
            try:
                result = await self._gate.with_gate(check)
            except Exception as e:  # reported per source, never raised
                result = SourceHealth(
                    source=source.name,
                    healthy=False,
                    functions_required=len(required),
                    error=f"{type(e).__name__}: {e}",
                )

            SOURCE_HEALTHY.labels(source=source.name).set(1 if result.healthy else 0)
            if result.response_time is not None:
                SOURCE_RESPONSE_SECONDS.labels(source=source.name).set(result.response_time)
            if result.healthy:
                self._logger.info(
                    "source_healthy",
                    source=source.name,
                    response_ms=round((result.response_time or 0.0) * 1000, 1),
                    schema=result.current_schema,
                    functions=result.functions_found,
                )
            else:
                self._logger.warning(
                    "source_unhealthy",
                    source=source.name,
                    circuit=self._circuit.state(source.name).value,
                    error=result.error,
                )
            results.append(result)
        return results

    async def _check_source(self, source: SourceConfig, required: tuple[str, ...]) -> SourceHealth:
        conn = await self._connector(source, self._config)
        try:
            timeout = source.command_timeout or self._config.command_timeout
            started = time.monotonic()
            await conn.fetchval("SELECT 1", timeout=timeout)
            response_time = time.monotonic() - started
            current_schema = await conn.fetchval("SELECT current_schema()", timeout=timeout)
            found = 0
            if required:
                found = int(
                    await conn.fetchval(
                        _FUNCTION_COUNT, self._config.schema_name, list(required), timeout=timeout
                    )
                )
        finally:
            await conn.close()

        missing = len(required) - found
        return SourceHealth(
            source=source.name,
            healthy=missing == 0,
            response_time=response_time,
            current_schema=current_schema,
            functions_found=found,
            functions_required=len(required),
            error=(
                f"{missing} of {len(required)} functions missing in {self._config.schema_name}"
                if missing
                else None
            ),
        )
