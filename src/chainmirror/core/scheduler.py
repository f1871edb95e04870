"""
In-process trigger source for sync jobs.

The [Scheduler][chainmirror.core.scheduler.Scheduler] fires registered jobs
on their configured interval, optionally once at startup. It also serves
one-off reschedule requests made by jobs through
[schedule_once()][chainmirror.core.scheduler.Scheduler.schedule_once].
It owns the policy for failed runs: a failure is logged and counted, the
job's next regular occurrence still fires, and a job that fails
``max_consecutive_failures`` times in a row is disabled.

A firing that finds its job still running is skipped rather than queued,
so runs of one job identity never overlap.

Examples:
    ```python
    scheduler = Scheduler(SchedulerConfig(max_consecutive_failures=5))
    scheduler.register(pool_list_job)
    scheduler.register(pool_delegators_job)

    loop.add_signal_handler(signal.SIGTERM, scheduler.request_shutdown)
    await scheduler.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

from .base_job import BaseJob
from .exceptions import JobAlreadyRunningError
from .logger import Logger


class SchedulerConfig(BaseModel):
    """Failure policy applied across all scheduled jobs."""

    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Disable a job after this many failed runs in a row (0 = unlimited)",
    )


class Scheduler:
    """Interval and one-shot trigger source with graceful shutdown."""

    def __init__(self, config: SchedulerConfig | None = None) -> None:
        self._config = config or SchedulerConfig()
        self._jobs: dict[str, BaseJob[Any]] = {}
        self._failures: dict[str, int] = {}
        self._disabled: set[str] = set()
        self._oneshots: set[asyncio.Task[None]] = set()
        self._shutdown_event = asyncio.Event()
        self._started = False
        self._logger = Logger("scheduler")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register(self, job: BaseJob[Any]) -> None:
        """Register ``job`` and bind this scheduler as its reschedule hook.

        Raises:
            ValueError: If a job with the same name is already registered.
        """
        name = str(job.JOB_NAME)
        if name in self._jobs:
            raise ValueError(f"job {name} is already registered")
        self._jobs[name] = job
        self._failures[name] = 0
        job.bind_scheduler(self)

    @property
    def jobs(self) -> dict[str, BaseJob[Any]]:
        """Registered jobs by name (copy)."""
        return dict(self._jobs)

    def consecutive_failures(self, job_name: str) -> int:
        return self._failures.get(job_name, 0)

    def is_disabled(self, job_name: str) -> bool:
        return job_name in self._disabled

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Request a graceful stop. Safe to call from signal handlers."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._started and not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to ``timeout`` seconds; return True if shutdown was requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    # -------------------------------------------------------------------------
    # Firing
    # -------------------------------------------------------------------------

    async def run_job(self, job_name: str) -> bool:
        """Fire one run of ``job_name`` and apply the failure policy.

        Returns:
            True if the run completed, False if it failed or was skipped.
        """
        job = self._jobs[job_name]
        if job_name in self._disabled:
            self._logger.debug("job_skipped_disabled", job=job_name)
            return False

        try:
            await job.execute()
        except JobAlreadyRunningError:
            self._logger.info("job_skipped_running", job=job_name)
            return False
        except Exception as e:  # failures were logged by the job; apply the policy here
            failures = self._failures[job_name] = self._failures[job_name] + 1
            limit = self._config.max_consecutive_failures
            self._logger.error(
                "job_run_failed",
                job=job_name,
                error=str(e),
                consecutive_failures=failures,
            )
            if limit > 0 and failures >= limit:
                self._disabled.add(job_name)
                self._logger.critical(
                    "max_consecutive_failures_reached", job=job_name, failures=failures, limit=limit
                )
            return False

        self._failures[job_name] = 0
        return True

    def schedule_once(self, job_name: str, delay: float) -> None:
        """Fire ``job_name`` once after ``delay`` seconds.

        Ignored (with a log line) when the scheduler is not running, e.g.
        during a ``--once`` invocation.
        """
        if job_name not in self._jobs:
            raise KeyError(f"unknown job {job_name}")
        if not self.is_running:
            self._logger.info("reschedule_ignored", job=job_name, delay_s=delay)
            return

        async def fire() -> None:
            if not await self.wait(delay):
                await self.run_job(job_name)

        task = asyncio.create_task(fire(), name=f"oneshot-{job_name}")
        self._oneshots.add(task)
        task.add_done_callback(self._oneshots.discard)
        self._logger.info("oneshot_scheduled", job=job_name, delay_s=delay)

    @property
    def pending_oneshots(self) -> int:
        return len(self._oneshots)

    async def _job_loop(self, job: BaseJob[Any]) -> None:
        name = str(job.JOB_NAME)
        config = job.config
        if config.run_on_startup:
            if await self.wait(config.startup_delay):
                return
            await self.run_job(name)

        while self.is_running and name not in self._disabled:
            if await self.wait(config.interval):
                return
            await self.run_job(name)

    async def run_once(self, job_names: Iterable[str] | None = None) -> bool:
        """Run the given jobs (default: every registered job) once, in order.

        Returns:
            True if every run completed.
        """
        names = list(job_names) if job_names is not None else list(self._jobs)
        results = [await self.run_job(name) for name in names]
        return all(results)

    async def run_forever(self) -> None:
        """Fire enabled jobs until shutdown is requested or every job is disabled."""
        self._shutdown_event.clear()
        self._started = True
        enabled = [job for job in self._jobs.values() if job.config.enabled]
        if not enabled:
            self._logger.warning("no_jobs_enabled")

        loops = [
            asyncio.create_task(self._job_loop(job), name=f"job-{job.JOB_NAME}") for job in enabled
        ]
        stopper = asyncio.create_task(self._shutdown_event.wait())
        all_loops = asyncio.gather(*loops)
        self._logger.info("scheduler_started", jobs=[str(job.JOB_NAME) for job in enabled])

        try:
            await asyncio.wait({stopper, all_loops}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._shutdown_event.set()
            pending = [*loops, *self._oneshots, stopper]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, all_loops, return_exceptions=True)
            self._started = False
            self._logger.info("scheduler_stopped")
