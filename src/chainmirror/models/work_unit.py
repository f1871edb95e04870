"""
Retryable unit of synchronization work.

A [WorkUnit][chainmirror.models.work_unit.WorkUnit] is the smallest piece of a
batched job that can be retried independently: a single key, or a fixed-size
chunk of keys bound to one upstream query. Units are created by the
[BatchOrchestrator][chainmirror.core.orchestrator.BatchOrchestrator]
when a unit fails and are mutated only by the
[FailedBatchRetryQueue][chainmirror.core.retry_queue.FailedBatchRetryQueue].
"""

from __future__ import annotations

import time
from collections.abc import Hashable
from dataclasses import dataclass, field


@dataclass(slots=True)
class WorkUnit:
    """A failed unit of work awaiting deferred retry.

    Attributes:
        job_name: Owning job; routes the unit to its fetch+write handler.
        payload: Keys the unit fetches (one key for per-key fan-out).
        batch_number: 1-based position of the unit in its original run.
        total_batches: Number of units in the original run.
        retry_count: Deferred retries attempted so far. Only ever increases.
        first_failure_at: Unix timestamp of the original failure.
        last_retry_at: Unix timestamp of the most recent retry, if any.
        failure_reason: Message of the most recent failure.
        last_exception: The most recent exception, kept for logging.
    """

    job_name: str
    payload: tuple[str, ...]
    batch_number: int = 1
    total_batches: int = 1
    retry_count: int = 0
    first_failure_at: float = field(default_factory=time.time)
    last_retry_at: float | None = None
    failure_reason: str = ""
    last_exception: BaseException | None = field(default=None, repr=False)

    @property
    def key(self) -> Hashable:
        """The unit key: the bare key for singleton units, else the key tuple."""
        if len(self.payload) == 1:
            return self.payload[0]
        return self.payload

    def record_failure(self, error: BaseException) -> None:
        """Stamp the latest failure on the unit."""
        self.failure_reason = str(error) or type(error).__name__
        self.last_exception = error

    def mark_retry(self) -> int:
        """Increment the retry counter and return the new value."""
        self.retry_count += 1
        self.last_retry_at = time.time()
        return self.retry_count
