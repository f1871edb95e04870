"""
Deferred retry queue for failed work units.

Units that still fail after the
[BatchOrchestrator][chainmirror.core.orchestrator.BatchOrchestrator] has
given up on them land here. A background task drains the queue every
``interval`` seconds, independently of the job run that produced the unit:

1. A unit whose ``retry_count`` has reached ``max_retries`` is logged at
   error level and dropped.
2. Otherwise ``retry_count`` is incremented and the drain sleeps
   ``base_delay * 2^(retry_count-1)`` (capped at ``max_delay``) before
   calling the handler registered for the unit's ``job_name``. The handler
   re-fetches the unit's keys and upserts the rows.
3. A successful handler removes the unit for good.
4. A failing handler stamps the error on the unit and puts it back at the
   tail, unless that was its last allowed attempt, in which case it is
   dropped.

Only one drain runs at a time, and each drain handles the units that were
queued when it started, so a unit is retried at most once per cycle. The
queue lives in process memory: units still waiting at shutdown are lost.

Examples:
    ```python
    queue = FailedBatchRetryQueue(RetryQueueConfig(interval=300))
    queue.register_handler("pool_delegators", job.retry_unit)

    async with queue:          # starts the periodic drain task
        await job.execute()
        await queue.await_drain(max_wait=1800)
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Self

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from chainmirror.models.work_unit import WorkUnit

from .logger import Logger
from .metrics import RETRY_QUEUE_DEPTH


RetryHandler = Callable[[WorkUnit], Awaitable[int]]


class RetryQueueConfig(BaseModel):
    """Drain cadence, backoff, and attempt cap of the retry queue."""

    max_retries: int = Field(default=7, ge=0, le=20, description="Deferred attempts per unit")
    base_delay: float = Field(default=1.0, ge=0.0, description="Backoff before the first retry")
    max_delay: float = Field(default=64.0, ge=0.0, description="Backoff ceiling (seconds)")
    interval: float = Field(default=300.0, ge=1.0, description="Seconds between drain cycles")
    drain_timeout: float = Field(
        default=1800.0, ge=0.0, description="Default max_wait of await_drain (seconds)"
    )
    drain_poll_interval: float = Field(
        default=60.0, gt=0.0, description="How often await_drain re-checks the queue"
    )

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= base_delay."""
        base_delay = info.data.get("base_delay", 1.0)
        if v < base_delay:
            raise ValueError(f"max_delay ({v}) must be >= base_delay ({base_delay})")
        return v


@dataclass(slots=True)
class DrainSummary:
    """Outcome counters of one drain cycle."""

    processed: int = 0
    succeeded: int = 0
    requeued: int = 0
    dropped: int = 0
    rows_written: int = 0


class FailedBatchRetryQueue:
    """In-process FIFO of failed work units with periodic deferred retries.

    Handlers are registered per job name; a job registers its own
    fetch-and-upsert coroutine when it is constructed.
    """

    def __init__(self, config: RetryQueueConfig | None = None) -> None:
        self._config = config or RetryQueueConfig()
        self._queue: deque[WorkUnit] = deque()
        self._handlers: dict[str, RetryHandler] = {}
        self._drain_lock = asyncio.Lock()
        self._in_flight = 0
        self._task: asyncio.Task[None] | None = None
        self._logger = Logger("retry_queue")

    @property
    def config(self) -> RetryQueueConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Queue Operations
    # -------------------------------------------------------------------------

    def register_handler(self, job_name: str, handler: RetryHandler) -> None:
        """Route units owned by ``job_name`` to ``handler``."""
        self._handlers[str(job_name)] = handler

    def add(self, unit: WorkUnit) -> None:
        """Append a unit at the tail of the queue."""
        self._queue.append(unit)
        self._publish_depth()
        self._logger.info(
            "unit_enqueued",
            job=unit.job_name,
            key=unit.key,
            batch=f"{unit.batch_number}/{unit.total_batches}",
            retry_count=unit.retry_count,
            reason=unit.failure_reason,
            depth=self.queue_depth,
        )

    @property
    def queue_depth(self) -> int:
        """Outstanding units: waiting in the queue or being retried right now."""
        return len(self._queue) + self._in_flight

    @property
    def is_empty(self) -> bool:
        """Whether no unit is waiting or being retried."""
        return self.queue_depth == 0

    def pending(self, job_name: str | None = None) -> list[WorkUnit]:
        """Snapshot of the waiting units, optionally filtered by job."""
        return [u for u in self._queue if job_name is None or u.job_name == job_name]

    def retry_delay(self, retry_count: int) -> float:
        """Backoff slept before attempt number ``retry_count`` (1-based)."""
        delay = self._config.base_delay * (2 ** max(retry_count - 1, 0))
        return float(min(delay, self._config.max_delay))

    def _publish_depth(self) -> None:
        RETRY_QUEUE_DEPTH.set(self.queue_depth)

    # -------------------------------------------------------------------------
    # Draining
    # -------------------------------------------------------------------------

    async def drain(self) -> DrainSummary:
        """Run one drain cycle over the units queued when it starts.

        Waits for a cycle already in progress to finish first.
        """
        summary = DrainSummary()
        async with self._drain_lock:
            batch = len(self._queue)
            if batch == 0:
                return summary

            self._logger.info("drain_started", units=batch)
            for _ in range(batch):
                if not self._queue:
                    break
                unit = self._queue.popleft()
                self._in_flight += 1
                try:
                    await self._process(unit, summary)
                finally:
                    self._in_flight -= 1
                    self._publish_depth()

            self._logger.info(
                "drain_completed",
                processed=summary.processed,
                succeeded=summary.succeeded,
                requeued=summary.requeued,
                dropped=summary.dropped,
                rows_written=summary.rows_written,
                remaining=self.queue_depth,
            )
        return summary

    async def _process(self, unit: WorkUnit, summary: DrainSummary) -> None:
        summary.processed += 1
        if unit.retry_count >= self._config.max_retries:
            self._drop(unit, summary, reason="max_retries_reached")
            return

        handler = self._handlers.get(unit.job_name)
        if handler is None:
            self._drop(unit, summary, reason="no_handler_registered")
            return

        attempt = unit.mark_retry()
        delay = self.retry_delay(attempt)
        self._logger.debug(
            "unit_retry_scheduled", job=unit.job_name, key=unit.key, attempt=attempt, delay_s=delay
        )
        await asyncio.sleep(delay)

        try:
            written = await handler(unit)
        except Exception as e:
            unit.record_failure(e)
            if unit.retry_count >= self._config.max_retries:
                self._drop(unit, summary, reason="max_retries_reached")
                return
            self._queue.append(unit)
            summary.requeued += 1
            self._logger.warning(
                "unit_retry_failed",
                job=unit.job_name,
                key=unit.key,
                retry_count=unit.retry_count,
                max_retries=self._config.max_retries,
                error=str(e),
            )
            return

        summary.succeeded += 1
        summary.rows_written += written
        self._logger.info(
            "unit_recovered",
            job=unit.job_name,
            key=unit.key,
            retry_count=unit.retry_count,
            rows=written,
        )

    def _drop(self, unit: WorkUnit, summary: DrainSummary, *, reason: str) -> None:
        summary.dropped += 1
        self._logger.error(
            "unit_dropped",
            job=unit.job_name,
            key=unit.key,
            reason=reason,
            retry_count=unit.retry_count,
            first_failure_at=unit.first_failure_at,
            last_error=unit.failure_reason,
        )

    async def await_drain(
        self,
        max_wait: float | None = None,
        poll_interval: float | None = None,
    ) -> bool:
        """Wait until the queue is empty, giving up after ``max_wait`` seconds.

        Does not drain anything itself; the periodic task does. Intended for
        jobs that must not report completion while their failed units are
        still being retried.

        Returns:
            True if the queue emptied, False if ``max_wait`` elapsed first.
        """
        if max_wait is None:
            max_wait = self._config.drain_timeout
        if poll_interval is None:
            poll_interval = self._config.drain_poll_interval

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        while not self.is_empty:
            remaining = deadline - loop.time()
            if remaining <= 0:
                self._logger.warning(
                    "await_drain_timeout", max_wait_s=max_wait, remaining_units=self.queue_depth
                )
                return False
            self._logger.debug("await_drain_waiting", remaining_units=self.queue_depth)
            await asyncio.sleep(min(poll_interval, remaining))

        self._logger.info("await_drain_completed")
        return True

    # -------------------------------------------------------------------------
    # Background Task
    # -------------------------------------------------------------------------

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.interval)
            try:
                await self.drain()
            except Exception as e:  # top-level boundary of the background task
                self._logger.exception("drain_failed", error=str(e))

    @property
    def is_started(self) -> bool:
        """Whether the periodic drain task is running."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic drain task (no-op if already started)."""
        if self.is_started:
            return
        self._task = asyncio.create_task(self._run_loop(), name="retry-queue-drain")
        self._logger.info("retry_queue_started", interval_s=self._config.interval)

    async def stop(self) -> None:
        """Cancel the periodic drain task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._logger.info("retry_queue_stopped", abandoned_units=self.queue_depth)

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
