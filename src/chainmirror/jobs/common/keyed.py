"""
Generic sync jobs built on [BaseJob][chainmirror.core.base_job.BaseJob].

Every concrete job is one of two shapes:

* [SnapshotSyncJob][chainmirror.jobs.common.keyed.SnapshotSyncJob] issues a
  single upstream query and refreshes one table with the whole result.
* [KeyedSyncJob][chainmirror.jobs.common.keyed.KeyedSyncJob] reads a driving
  key set from the local store, fans the upstream query out through the
  [BatchOrchestrator][chainmirror.core.orchestrator.BatchOrchestrator], and
  refreshes one table with the merged successes. Units that fail are retried
  later by the
  [FailedBatchRetryQueue][chainmirror.core.retry_queue.FailedBatchRetryQueue]
  through [retry_unit()][chainmirror.jobs.common.keyed.KeyedSyncJob.retry_unit],
  which upserts instead of refreshing.

A run that fetches no rows at all leaves its table untouched, so an upstream
outage never empties the local mirror.

A concrete job declares only its table, its key query, its upstream query
and, where the upstream rows lack part of the key, how to shape a row.
"""

from __future__ import annotations

import functools
from abc import abstractmethod
from collections.abc import Sequence
from typing import Any, ClassVar, TypeVar

import asyncpg

from chainmirror.core.base_job import BaseJob
from chainmirror.core.executor import ResilientQueryExecutor
from chainmirror.core.orchestrator import BatchOrchestrator
from chainmirror.core.retry_queue import FailedBatchRetryQueue
from chainmirror.core.store import Store
from chainmirror.models.table import TableSpec
from chainmirror.models.work_unit import WorkUnit

from .configs import KeyedJobConfig, SnapshotJobConfig


SnapshotConfigT = TypeVar("SnapshotConfigT", bound=SnapshotJobConfig)
KeyedConfigT = TypeVar("KeyedConfigT", bound=KeyedJobConfig)


class SnapshotSyncJob(BaseJob[SnapshotConfigT]):
    """Mirror one upstream result set into ``TABLE`` with a full refresh."""

    TABLE: ClassVar[TableSpec]

    @abstractmethod
    def build_query(self, schema: str) -> str:
        """Upstream query for the whole result set."""
        ...

    async def sync(self, keys: list[str] | None) -> int:
        records = await self._executor.execute(self.build_query(self._executor.schema_name))
        self.set_gauge("records_fetched", len(records))
        if not records:
            self._logger.warning("no_records_fetched", table=self.TABLE.name)
            return 0
        return await self._store.refresh(self.TABLE, records)


class KeyedSyncJob(BaseJob[KeyedConfigT]):
    """Fan an upstream query out over a driving key set and refresh ``TABLE``.

    Attributes:
        TABLE: Local table refreshed by each run.
        KEYS_QUERY: Local query whose first column is the driving key set.
    """

    TABLE: ClassVar[TableSpec]
    KEYS_QUERY: ClassVar[str]

    def __init__(
        self,
        store: Store,
        executor: ResilientQueryExecutor,
        retry_queue: FailedBatchRetryQueue,
        config: KeyedConfigT | None = None,
    ) -> None:
        super().__init__(store=store, executor=executor, retry_queue=retry_queue, config=config)
        self._orchestrator = BatchOrchestrator(retry_queue, self._config.orchestrator)
        retry_queue.register_handler(self.JOB_NAME, self.retry_unit)

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    # -------------------------------------------------------------------------
    # Query Shape
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_query(self, schema: str) -> str:
        """Upstream query for one unit of keys."""
        ...

    def query_params(self, keys: Sequence[str]) -> tuple[Any, ...]:
        """Bind parameters for one unit: the single key of a per-key unit."""
        return (keys[0],)

    def shape_row(self, keys: Sequence[str], record: asyncpg.Record) -> dict[str, Any]:
        """Convert one upstream row to a local record."""
        return dict(record)

    # -------------------------------------------------------------------------
    # Job Steps
    # -------------------------------------------------------------------------

    async def fetch_keys(self) -> list[str]:
        return await self._store.fetch_keys(self.KEYS_QUERY)

    async def fetch_unit(self, keys: list[str]) -> list[dict[str, Any]]:
        """Fetch the upstream rows of one work unit."""
        return await self._executor.execute(
            self.build_query(self._executor.schema_name),
            self.query_params(keys),
            row_mapper=functools.partial(self.shape_row, keys),
        )

    async def sync(self, keys: list[str] | None) -> int:
        outcome = await self._orchestrator.run(self.JOB_NAME, keys or [], self.fetch_unit)
        self.set_gauge("units_total", outcome.total_units)
        self.set_gauge("units_deferred", len(outcome.failures))
        if outcome.failures:
            self._logger.warning(
                "units_deferred", deferred=len(outcome.failures), total=outcome.total_units
            )
        records = outcome.records
        if not records:
            self._logger.warning(
                "no_records_fetched", table=self.TABLE.name, deferred=len(outcome.failures)
            )
            return 0
        return await self._store.refresh(self.TABLE, records)

    async def retry_unit(self, unit: WorkUnit) -> int:
        """Retry-queue handler: re-fetch a failed unit and merge its rows."""
        records = await self.fetch_unit(list(unit.payload))
        return await self._store.upsert(self.TABLE, records)
