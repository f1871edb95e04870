"""
Process-wide concurrency gate.

A single [ConcurrencyGate][chainmirror.core.gate.ConcurrencyGate] bounds how
many outbound database operations run at once across every job in the
process: upstream source queries issued by the
[ResilientQueryExecutor][chainmirror.core.executor.ResilientQueryExecutor]
and local writes issued by the [Store][chainmirror.core.store.Store].
Jobs never create their own gate; they share the one built at startup.

Examples:
    ```python
    gate = ConcurrencyGate(GateConfig(max_concurrent_operations=8))

    async with gate.guard():
        rows = await conn.fetch(query)

    rows = await gate.with_gate(lambda: conn.fetch(query))
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from pydantic import BaseModel, Field

from .metrics import GATE_IN_FLIGHT


T = TypeVar("T")


class GateConfig(BaseModel):
    """Size of the process-wide permit pool."""

    max_concurrent_operations: int = Field(
        default=8,
        ge=1,
        le=200,
        description="Maximum simultaneous outbound database operations",
    )


class ConcurrencyGate:
    """Counting permit pool shared by every job in the process.

    ``acquire()`` suspends the calling task (never the event loop) until a
    permit is free. Prefer [guard()][chainmirror.core.gate.ConcurrencyGate.guard]
    or [with_gate()][chainmirror.core.gate.ConcurrencyGate.with_gate] over
    manual ``acquire()``/``release()`` so the permit is returned on every
    exit path.
    """

    def __init__(self, config: GateConfig | None = None) -> None:
        self._config = config or GateConfig()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_operations)
        self._in_flight = 0

    @property
    def capacity(self) -> int:
        """Total number of permits."""
        return self._config.max_concurrent_operations

    @property
    def in_flight(self) -> int:
        """Number of permits currently held."""
        return self._in_flight

    async def acquire(self) -> None:
        """Wait for a permit and take it."""
        await self._semaphore.acquire()
        self._in_flight += 1
        GATE_IN_FLIGHT.set(self._in_flight)

    def release(self) -> None:
        """Return a permit taken by ``acquire()``."""
        self._in_flight -= 1
        GATE_IN_FLIGHT.set(self._in_flight)
        self._semaphore.release()

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[None]:
        """Hold one permit for the duration of the ``async with`` block."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    async def with_gate(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` while holding a permit and return its result.

        Exceptions raised by ``operation`` propagate after the permit is
        released.
        """
        async with self.guard():
            return await operation()

    def __repr__(self) -> str:
        return f"ConcurrencyGate(in_flight={self._in_flight}, capacity={self.capacity})"
