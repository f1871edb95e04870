"""
Concurrency-capped batch orchestrator.

Fans a large key set out into work units and runs a caller-supplied
unit-of-work coroutine for each one. Used both for per-key fan-out (one
upstream call per pool id) and for chunked fan-out (one call per N
transaction hashes).

Each run:

1. De-duplicates the keys (first occurrence wins) and partitions them into
   singleton or ``unit_size`` chunks.
2. Starts one task per unit; at most ``max_concurrency`` of them run at
   once. This cap is per run and sits below the process-wide
   [ConcurrencyGate][chainmirror.core.gate.ConcurrencyGate], which the
   executor takes on every upstream attempt, so one job cannot hold every
   gate permit.
3. Sleeps before each unit's call to smooth bursts. The pause is
   ``pacing / max_concurrency`` unless ``unit_delay`` sets it explicitly.
4. Retries a failed unit inline ``unit_retries`` times. A unit that still
   fails is handed to the
   [FailedBatchRetryQueue][chainmirror.core.retry_queue.FailedBatchRetryQueue]
   and reported as a failure; the run itself never raises for it.

Merging is keyed by unit, so completion order does not matter.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from chainmirror.models.work_unit import WorkUnit

from .logger import Logger
from .retry_queue import FailedBatchRetryQueue


T = TypeVar("T")

UnitOfWork = Callable[[list[str]], Awaitable[list[T]]]


class OrchestratorConfig(BaseModel):
    """Fan-out shape of one job's batched fetch."""

    unit_size: int = Field(default=1, ge=1, le=10_000, description="Keys per work unit")
    max_concurrency: int = Field(
        default=3, ge=1, le=10, description="Units of this job running at once"
    )
    unit_delay: float | None = Field(
        default=None,
        ge=0.0,
        le=10.0,
        description="Fixed pre-call pause (seconds); overrides pacing / max_concurrency",
    )
    pacing: float = Field(
        default=0.3, ge=0.0, le=10.0, description="Pause shared by the in-flight units (seconds)"
    )
    unit_retries: int = Field(
        default=0, ge=0, le=10, description="Inline retries before deferring a unit"
    )
    unit_retry_delay: float = Field(
        default=5.0, ge=0.0, description="Inline retry wait, multiplied by the attempt number"
    )

    @property
    def effective_unit_delay(self) -> float:
        """Pre-call pause: ``unit_delay`` when set, else ``pacing / max_concurrency``."""
        if self.unit_delay is not None:
            return self.unit_delay
        return self.pacing / self.max_concurrency


def partition(items: Iterable[str], size: int) -> list[tuple[str, ...]]:
    """Split ``items`` into tuples of at most ``size`` distinct keys."""
    unique = list(dict.fromkeys(items))
    return [tuple(unique[i : i + size]) for i in range(0, len(unique), size)]


def unit_key(payload: tuple[str, ...]) -> Hashable:
    """Map a unit payload to its result key: the key itself for singletons."""
    return payload[0] if len(payload) == 1 else payload


@dataclass(slots=True)
class BatchResult(Generic[T]):
    """Outcome of one unit: either ``records`` (possibly empty) or ``error``."""

    payload: tuple[str, ...]
    records: list[T] | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BatchOutcome(Generic[T]):
    """Merged outcome of a batched run.

    Attributes:
        successes: Records per unit key, for every unit that succeeded.
        failures: Unit keys handed to the retry queue.
    """

    successes: dict[Hashable, list[T]] = field(default_factory=dict)
    failures: list[Hashable] = field(default_factory=list)

    @property
    def records(self) -> list[T]:
        """Every successful record, flattened across units."""
        return [record for records in self.successes.values() for record in records]

    @property
    def total_units(self) -> int:
        return len(self.successes) + len(self.failures)


class BatchOrchestrator:
    """Runs a unit of work over a partitioned key set with failure isolation.

    Args:
        retry_queue: Receives units that fail after inline retries.
        config: Default fan-out shape; ``run()`` may override ``unit_size``.
    """

    def __init__(
        self,
        retry_queue: FailedBatchRetryQueue,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._retry_queue = retry_queue
        self._config = config or OrchestratorConfig()
        self._logger = Logger("orchestrator")

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    async def run(
        self,
        job_name: str,
        items: Iterable[str],
        unit_of_work: UnitOfWork[T],
        *,
        unit_size: int | None = None,
    ) -> BatchOutcome[T]:
        """Run ``unit_of_work`` over ``items`` and collect the outcome.

        Args:
            job_name: Owning job; stamped on deferred units for routing.
            items: Keys to fetch.
            unit_of_work: Coroutine fetching the records of one unit's keys.
            unit_size: Keys per unit, overriding the configured value.

        Returns:
            Successful records per unit and the keys of deferred units.
        """
        units = partition(items, unit_size or self._config.unit_size)
        outcome: BatchOutcome[T] = BatchOutcome()
        if not units:
            return outcome

        started = time.monotonic()
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        total = len(units)

        async def process(number: int, payload: tuple[str, ...]) -> None:
            async with semaphore:
                delay = self._config.effective_unit_delay
                if delay > 0:
                    await asyncio.sleep(delay)
                result = await self._attempt(job_name, payload, unit_of_work)

            key = unit_key(payload)
            if result.ok:
                outcome.successes[key] = result.records or []
                return

            outcome.failures.append(key)
            unit = WorkUnit(
                job_name=job_name,
                payload=payload,
                batch_number=number,
                total_batches=total,
            )
            if result.error is not None:
                unit.record_failure(result.error)
            self._retry_queue.add(unit)

        async with asyncio.TaskGroup() as tg:
            for number, payload in enumerate(units, start=1):
                tg.create_task(process(number, payload))

        self._logger.info(
            "batch_run_completed",
            job=job_name,
            units=total,
            succeeded=len(outcome.successes),
            deferred=len(outcome.failures),
            records=sum(len(r) for r in outcome.successes.values()),
            duration_s=round(time.monotonic() - started, 3),
        )
        return outcome

    async def _attempt(
        self,
        job_name: str,
        payload: tuple[str, ...],
        unit_of_work: UnitOfWork[Any],
    ) -> BatchResult[Any]:
        attempts = self._config.unit_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                records = await unit_of_work(list(payload))
            except Exception as e:
                if attempt >= attempts:
                    return BatchResult(payload=payload, error=e)
                delay = self._config.unit_retry_delay * attempt
                self._logger.warning(
                    "unit_retry",
                    job=job_name,
                    key=unit_key(payload),
                    attempt=attempt,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
            else:
                return BatchResult(payload=payload, records=list(records))
        raise RuntimeError("Unexpected state in _attempt")
