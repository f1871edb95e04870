"""
Per-source circuit breaker registry.

Tracks consecutive failures and the time of the last failure for every
upstream source, and derives a
[CircuitState][chainmirror.models.constants.CircuitState] from them on
demand. There is no background timer: an open circuit becomes eligible
again the first time it is inspected after the cooldown has elapsed.

The registry is owned by the
[ResilientQueryExecutor][chainmirror.core.executor.ResilientQueryExecutor]
and injected into it, so tests and multiple executors can share or isolate
source health explicitly. All access goes through a ``threading.Lock`` so
the registry stays consistent even when read from worker threads (e.g. a
metrics collector).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from chainmirror.models.constants import CircuitState

from .metrics import SOURCE_FAILURES


class CircuitBreakerConfig(BaseModel):
    """Failure threshold and cooldown applied to every upstream source."""

    threshold: int = Field(
        default=3, ge=1, description="Consecutive failures before a source is skipped"
    )
    cooldown: float = Field(
        default=300.0, ge=0.0, description="Seconds an open source stays excluded"
    )


@dataclass(slots=True)
class SourceHealth:
    """Point-in-time health snapshot of one source."""

    failures: int = 0
    last_failure_at: float | None = None


class CircuitBreakerRegistry:
    """Thread-safe failure bookkeeping for named upstream sources.

    Args:
        config: Threshold and cooldown.
        clock: Monotonic time source in seconds. Injectable for tests.

    Examples:
        ```python
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(threshold=3, cooldown=300))
        for _ in range(3):
            registry.record_failure("primary")
        registry.is_open("primary")   # True for the next 5 minutes
        registry.record_success("primary")
        registry.state("primary")     # CircuitState.CLOSED
        ```
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._health: dict[str, SourceHealth] = {}

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def state(self, source: str) -> CircuitState:
        """Derive the current circuit state of ``source``."""
        with self._lock:
            health = self._health.get(source)
            if health is None or health.failures < self._config.threshold:
                return CircuitState.CLOSED
            last = health.last_failure_at
            if last is not None and self._clock() - last < self._config.cooldown:
                return CircuitState.OPEN
            return CircuitState.HALF_OPEN

    def is_open(self, source: str) -> bool:
        """Whether ``source`` must be skipped during candidate selection."""
        return self.state(source) is CircuitState.OPEN

    def record_failure(self, source: str) -> int:
        """Record one exhausted-retries failure and return the new count."""
        with self._lock:
            health = self._health.setdefault(source, SourceHealth())
            health.failures += 1
            health.last_failure_at = self._clock()
            failures = health.failures
        SOURCE_FAILURES.labels(source=source).set(failures)
        return failures

    def record_success(self, source: str) -> None:
        """Reset the failure count of ``source`` (closes the circuit)."""
        with self._lock:
            health = self._health.get(source)
            if health is None or health.failures == 0:
                return
            health.failures = 0
            health.last_failure_at = None
        SOURCE_FAILURES.labels(source=source).set(0)

    def failures(self, source: str) -> int:
        """Current consecutive failure count of ``source``."""
        with self._lock:
            health = self._health.get(source)
            return health.failures if health else 0

    def snapshot(self) -> dict[str, SourceHealth]:
        """Copy of every tracked source's health."""
        with self._lock:
            return {
                name: SourceHealth(h.failures, h.last_failure_at) for name, h in self._health.items()
            }
