"""
Write-path facade over the local store.

[Store][chainmirror.core.store.Store] is the only component that writes to
mirrored tables. It exposes two write operations, both driven by a
[TableSpec][chainmirror.models.table.TableSpec]:

* [refresh()][chainmirror.core.store.Store.refresh] replaces a table's full
  contents: ``DELETE`` every row, then insert the fresh RefreshSet in
  fixed-size batches.
* [upsert()][chainmirror.core.store.Store.upsert] merges rows without
  deleting anything; the retry queue uses it to persist late units.

Each batch is one multi-row ``INSERT ... ON CONFLICT (key) DO UPDATE``
statement, so a batch costs one round trip and is atomic on its own. Rows
sharing an upsert key are collapsed before batching, since a single
``INSERT`` cannot touch the same conflict key twice.

By default the delete and the batches are separate statements, each holding
one [ConcurrencyGate][chainmirror.core.gate.ConcurrencyGate] permit, and
readers may briefly observe an empty table. With ``atomic_refresh`` enabled
the whole refresh runs in one transaction under one permit, and readers see
either the old or the new contents.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Final

from pydantic import BaseModel, Field, field_validator

from chainmirror.models.table import TableSpec

from .gate import ConcurrencyGate
from .logger import Logger
from .pool import Pool
from .yaml import load_yaml


_MIN_TIMEOUT_SECONDS: Final = 0.1
_MAX_BIND_PARAMETERS: Final = 32_767  # PostgreSQL wire protocol limit per statement


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class BatchConfig(BaseModel):
    """Rows per multi-row upsert statement."""

    max_size: int = Field(default=500, ge=1, le=10_000, description="Maximum rows per batch")


class StoreTimeoutsConfig(BaseModel):
    """Timeouts for store operations in seconds (None = no limit)."""

    query: float | None = Field(default=60.0, description="Key and stats query timeout")
    batch: float | None = Field(default=120.0, description="Per-batch statement timeout")

    @field_validator("query", "batch", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout: None (infinite) or >= 0.1 seconds."""
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the write path."""

    batch: BatchConfig = Field(default_factory=BatchConfig)
    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)
    atomic_refresh: bool = Field(
        default=False,
        description="Run delete and all inserts of a refresh in one transaction",
    )


# ---------------------------------------------------------------------------
# Statement Builders
# ---------------------------------------------------------------------------


def build_upsert(spec: TableSpec, row_count: int) -> str:
    """Build a multi-row ``INSERT ... ON CONFLICT`` statement for ``row_count`` rows.

    Placeholders are numbered row-major, matching a flattened list of
    ``spec.row_params(record)`` tuples. Tables whose every column is part
    of the key use ``DO NOTHING``.
    """
    width = len(spec.columns)
    values = ", ".join(
        "(" + ", ".join(f"${row * width + col + 1}" for col in range(width)) + ")"
        for row in range(row_count)
    )
    updates = spec.update_columns
    if updates:
        action = "DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
    else:
        action = "DO NOTHING"
    return (
        f"INSERT INTO {spec.name} ({', '.join(spec.columns)}) VALUES {values} "
        f"ON CONFLICT ({', '.join(spec.key_columns)}) {action}"
    )


def build_delete(spec: TableSpec) -> str:
    """Build the statement that empties ``spec``'s table."""
    return f"DELETE FROM {spec.name}"  # noqa: S608


# ---------------------------------------------------------------------------
# Store Class
# ---------------------------------------------------------------------------


class Store:
    """Local store facade: driving-key reads, full refresh, and per-unit upsert.

    Args:
        pool: Connection pool for the local database.
        gate: Process-wide gate shared with the upstream executor.
        config: Batch size, timeouts, and refresh atomicity.

    Examples:
        ```python
        store = Store(pool=pool, gate=gate)
        async with store:
            written = await store.refresh(POOL_LIST_TABLE, records)
        ```
    """

    def __init__(
        self,
        pool: Pool,
        gate: ConcurrencyGate,
        config: StoreConfig | None = None,
    ) -> None:
        self._pool = pool
        self._gate = gate
        self._config = config or StoreConfig()
        self._logger = Logger("store")

    @classmethod
    def from_yaml(cls, config_path: str, gate: ConcurrencyGate) -> Store:
        """Create a Store from the ``pool`` and ``store`` sections of a YAML file."""
        return cls.from_dict(load_yaml(config_path), gate=gate)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any], gate: ConcurrencyGate) -> Store:
        """Create a Store from a dict with ``pool`` and ``store`` keys."""
        pool = Pool.from_dict(config_dict.get("pool", {}))
        return cls(pool=pool, gate=gate, config=StoreConfig(**config_dict.get("store", {})))

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def pool(self) -> Pool:
        return self._pool

    def batch_size(self, spec: TableSpec) -> int:
        """Rows per statement for ``spec``, capped by the bind-parameter limit."""
        return max(1, min(self._config.batch.max_size, _MAX_BIND_PARAMETERS // len(spec.columns)))

    def _batches(
        self, spec: TableSpec, records: Sequence[Mapping[str, Any]]
    ) -> Iterator[list[Mapping[str, Any]]]:
        size = self.batch_size(spec)
        for start in range(0, len(records), size):
            yield list(records[start : start + size])

    @staticmethod
    def _flatten(spec: TableSpec, batch: Sequence[Mapping[str, Any]]) -> list[Any]:
        params: list[Any] = []
        for record in batch:
            params.extend(spec.row_params(record))
        return params

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def fetch_keys(self, query: str, *args: Any) -> list[str]:
        """Run a driving-key query and return its first column as strings.

        NULL values are dropped; order is whatever the query defines.
        """
        async with self._gate.guard():
            rows = await self._pool.fetch(query, *args, timeout=self._config.timeouts.query)
        return [str(row[0]) for row in rows if row[0] is not None]

    async def table_stats(self, specs: Sequence[TableSpec]) -> dict[str, int]:
        """Row count of each table, for post-run summaries."""
        stats: dict[str, int] = {}
        for spec in specs:
            async with self._gate.guard():
                count = await self._pool.fetchval(
                    f"SELECT count(*) FROM {spec.name}",  # noqa: S608
                    timeout=self._config.timeouts.query,
                )
            stats[spec.name] = int(count or 0)
        return stats

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def refresh(self, spec: TableSpec, records: Sequence[Mapping[str, Any]]) -> int:
        """Replace the full contents of ``spec.name`` with ``records``.

        Args:
            spec: Target table description.
            records: The complete RefreshSet for this run.

        Returns:
            Number of rows written after key deduplication.

        Raises:
            asyncpg.PostgresError: When a statement fails. Remaining batches
                are skipped; in non-atomic mode earlier batches stay
                committed, in atomic mode everything is rolled back.
        """
        rows = self._deduplicate(spec, records)
        if self._config.atomic_refresh:
            written = await self._refresh_atomic(spec, rows)
        else:
            async with self._gate.guard():
                await self._pool.execute(build_delete(spec), timeout=self._config.timeouts.batch)
            written = await self._write_batches(spec, rows)

        self._logger.info(
            "refresh_completed",
            table=spec.name,
            received=len(records),
            written=written,
            atomic=self._config.atomic_refresh,
        )
        return written

    async def upsert(self, spec: TableSpec, records: Sequence[Mapping[str, Any]]) -> int:
        """Merge ``records`` into ``spec.name`` without deleting existing rows.

        Returns:
            Number of rows written after key deduplication.
        """
        rows = self._deduplicate(spec, records)
        written = await self._write_batches(spec, rows)
        self._logger.debug("upsert_completed", table=spec.name, written=written)
        return written

    def _deduplicate(
        self, spec: TableSpec, records: Sequence[Mapping[str, Any]]
    ) -> list[Mapping[str, Any]]:
        skipped = sum(1 for record in records if not spec.has_key(record))
        if skipped:
            self._logger.warning(
                "records_skipped_no_key",
                table=spec.name,
                skipped=skipped,
                key=",".join(spec.key_columns),
            )
        return spec.deduplicate(records)

    async def _write_batches(self, spec: TableSpec, rows: Sequence[Mapping[str, Any]]) -> int:
        written = 0
        for number, batch in enumerate(self._batches(spec, rows), start=1):
            statement = build_upsert(spec, len(batch))
            try:
                async with self._gate.guard():
                    await self._pool.execute(
                        statement,
                        *self._flatten(spec, batch),
                        timeout=self._config.timeouts.batch,
                    )
            except Exception as e:
                self._logger.error(
                    "write_batch_failed",
                    table=spec.name,
                    batch=number,
                    rows=len(batch),
                    written=written,
                    error=str(e),
                )
                raise
            written += len(batch)
        return written

    async def _refresh_atomic(self, spec: TableSpec, rows: Sequence[Mapping[str, Any]]) -> int:
        timeout = self._config.timeouts.batch
        written = 0
        async with self._gate.guard(), self._pool.transaction() as conn:
            await conn.execute(build_delete(spec), timeout=timeout)
            for batch in self._batches(spec, rows):
                await conn.execute(
                    build_upsert(spec, len(batch)), *self._flatten(spec, batch), timeout=timeout
                )
                written += len(batch)
        return written

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Store:
        await self._pool.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self._pool.close()
