"""
Abstract base class for scheduled sync jobs.

``BaseJob[ConfigT]`` implements the invocation discipline shared by every
job. [execute()][chainmirror.core.base_job.BaseJob.execute] is the single
entry point a scheduler calls:

* **Non-reentrant per identity.** At most one run per ``JOB_NAME`` is
  active in the process, across instances. A second call while a run is
  active raises
  [JobAlreadyRunningError][chainmirror.core.exceptions.JobAlreadyRunningError].
* **Self-rescheduling on empty input.** When the driving key set is empty
  (the upstream prerequisite table is not populated yet), nothing is
  written. One future run is requested from the bound scheduler after
  ``empty_reschedule_delay`` seconds, and the run ends as a success.
* **Fail-loud.** Any exception escaping the run is logged with context,
  counted, moves the job to ``FAILED``, and is re-raised to the scheduler.

Subclasses implement [fetch_keys()][chainmirror.core.base_job.BaseJob.fetch_keys]
(return ``None`` for jobs without a driving key set) and
[sync()][chainmirror.core.base_job.BaseJob.sync].

See Also:
    [Scheduler][chainmirror.core.scheduler.Scheduler]: In-process trigger
        source that implements the rescheduling hook.
    [KeyedSyncJob][chainmirror.jobs.common.keyed.KeyedSyncJob]: Generic
        fan-out job built on this class.
"""

from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Protocol, Self, TypeVar, cast

from pydantic import BaseModel, Field

from chainmirror.models.constants import JobName, JobState
from chainmirror.models.table import TableSpec

from .exceptions import JobAlreadyRunningError
from .executor import ResilientQueryExecutor
from .logger import Logger
from .metrics import JOB_COUNTER, JOB_DURATION_SECONDS, JOB_GAUGE, MetricsConfig
from .retry_queue import FailedBatchRetryQueue
from .store import Store


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseJobConfig(BaseModel):
    """Configuration shared by every job.

    The trigger fields (``enabled``, ``interval``, ``run_on_startup``,
    ``startup_delay``) are read by the
    [Scheduler][chainmirror.core.scheduler.Scheduler]; the rest by the job.
    """

    enabled: bool = Field(default=True, description="Register the job with the scheduler")
    interval: float = Field(
        default=86_400.0, ge=60.0, description="Seconds between scheduled runs"
    )
    run_on_startup: bool = Field(default=True, description="Fire once when the scheduler starts")
    startup_delay: float = Field(
        default=0.0, ge=0.0, description="Delay of the startup run (seconds)"
    )
    empty_reschedule_delay: float = Field(
        default=14_400.0,
        ge=0.0,
        description="Delay of the one-off rerun when the driving key set is empty",
    )
    await_retry_drain: bool = Field(
        default=False, description="Wait for the retry queue to empty before completing"
    )
    drain_timeout: float = Field(
        default=1800.0, ge=0.0, description="Maximum wait for the retry queue (seconds)"
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig, description="Prometheus metrics configuration"
    )


ConfigT = TypeVar("ConfigT", bound=BaseJobConfig)


class Rescheduler(Protocol):
    """Scheduler hook a job uses to request a one-off future run."""

    def schedule_once(self, job_name: str, delay: float) -> None: ...


# ---------------------------------------------------------------------------
# Base Job
# ---------------------------------------------------------------------------


class BaseJob(ABC, Generic[ConfigT]):
    """Abstract base class for all sync jobs.

    Attributes:
        JOB_NAME: Job identity; the unit of mutual exclusion.
        CONFIG_CLASS: Pydantic model used by the factory methods.
        TABLES: Tables written by the job, reported after each run.
    """

    JOB_NAME: ClassVar[JobName]
    CONFIG_CLASS: ClassVar[type[BaseJobConfig]]
    TABLES: ClassVar[tuple[TableSpec, ...]] = ()

    _running: ClassVar[set[str]] = set()
    _running_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        store: Store,
        executor: ResilientQueryExecutor,
        retry_queue: FailedBatchRetryQueue,
        config: ConfigT | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._retry_queue = retry_queue
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._scheduler: Rescheduler | None = None
        self._state = JobState.IDLE
        self._logger = Logger(self.JOB_NAME)

    @property
    def config(self) -> ConfigT:
        """The typed job configuration (read-only)."""
        return self._config

    @property
    def state(self) -> JobState:
        return self._state

    def bind_scheduler(self, scheduler: Rescheduler) -> None:
        """Attach the scheduler used for empty-input reschedules."""
        self._scheduler = scheduler

    @classmethod
    def is_running(cls, job_name: str | None = None) -> bool:
        """Whether a run of ``job_name`` (default: this class's job) is active."""
        with cls._running_lock:
            return (job_name or cls.JOB_NAME) in cls._running

    # -------------------------------------------------------------------------
    # Job Steps
    # -------------------------------------------------------------------------

    async def fetch_keys(self) -> list[str] | None:
        """Return the driving key set, or ``None`` if the job has none."""
        return None

    @abstractmethod
    async def sync(self, keys: list[str] | None) -> int:
        """Fetch upstream data for ``keys`` and write it.

        Returns:
            Number of rows written to the local store.
        """
        ...

    # -------------------------------------------------------------------------
    # Scheduling Contract
    # -------------------------------------------------------------------------

    def _claim_identity(self) -> None:
        with self._running_lock:
            if self.JOB_NAME in self._running:
                raise JobAlreadyRunningError(f"job {self.JOB_NAME} is already running")
            self._running.add(self.JOB_NAME)

    def _release_identity(self) -> None:
        with self._running_lock:
            self._running.discard(self.JOB_NAME)

    async def execute(self) -> int:
        """Run the job once under the scheduling contract.

        Returns:
            Rows written (0 when the run was rescheduled).

        Raises:
            JobAlreadyRunningError: If the same job identity is running.
            Exception: Any unrecoverable error of the run, after logging.
        """
        self._claim_identity()
        self._state = JobState.RUNNING
        started = time.monotonic()
        self._logger.info("job_started")

        try:
            keys = await self.fetch_keys()
            if keys is not None and not keys:
                self._reschedule_empty()
                self._state = JobState.IDLE
                return 0

            written = await self.sync(keys)

            if self._config.await_retry_drain:
                await self._retry_queue.await_drain(max_wait=self._config.drain_timeout)

            if self.TABLES:
                stats = await self._store.table_stats(self.TABLES)
                self._logger.info("store_stats", **stats)

        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            self._state = JobState.FAILED
            raise

        except Exception as e:  # top-level boundary of a job run: log, count, re-raise
            self._state = JobState.FAILED
            self.inc_counter("runs_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            self._logger.exception(
                "job_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_s=round(time.monotonic() - started, 3),
            )
            raise

        else:
            duration = time.monotonic() - started
            self._state = JobState.IDLE
            self.inc_counter("runs_success")
            self.set_gauge("last_run_timestamp", time.time())
            self.set_gauge("last_run_records", written)
            if self._config.metrics.enabled:
                JOB_DURATION_SECONDS.labels(job=self.JOB_NAME).observe(duration)
            self._logger.info("job_completed", records=written, duration_s=round(duration, 3))
            return written

        finally:
            self._release_identity()

    def _reschedule_empty(self) -> None:
        delay = self._config.empty_reschedule_delay
        self.inc_counter("runs_rescheduled")
        if self._scheduler is None:
            self._logger.warning("job_reschedule_unavailable", reason="no_driving_keys")
            return
        self._scheduler.schedule_once(self.JOB_NAME, delay)
        self._logger.info("job_rescheduled", reason="no_driving_keys", delay_s=delay)

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        store: Store,
        executor: ResilientQueryExecutor,
        retry_queue: FailedBatchRetryQueue,
    ) -> Self:
        """Create a job from a configuration dictionary parsed into ``CONFIG_CLASS``."""
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(store=store, executor=executor, retry_queue=retry_queue, config=config)

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a named gauge for this job (no-op when metrics are disabled)."""
        if not self._config.metrics.enabled:
            return
        JOB_GAUGE.labels(job=self.JOB_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a named counter for this job (no-op when metrics are disabled)."""
        if not self._config.metrics.enabled:
            return
        JOB_COUNTER.labels(job=self.JOB_NAME, name=name).inc(value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(job={self.JOB_NAME}, state={self._state})"
