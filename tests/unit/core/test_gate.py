"""
Unit tests for core.gate module.

Tests:
- GateConfig bounds
- acquire()/release() accounting
- guard() and with_gate() return the permit on every exit path
- The in-flight count never exceeds capacity under contention
"""

import asyncio

import pytest
from pydantic import ValidationError

from chainmirror.core.gate import ConcurrencyGate, GateConfig


class TestGateConfig:
    """GateConfig Pydantic model."""

    def test_defaults(self):
        assert GateConfig().max_concurrent_operations == 8

    @pytest.mark.parametrize("value", [0, 201])
    def test_bounds(self, value):
        with pytest.raises(ValidationError):
            GateConfig(max_concurrent_operations=value)


class TestPermits:
    """Permit accounting."""

    async def test_acquire_release(self):
        gate = ConcurrencyGate(GateConfig(max_concurrent_operations=2))
        await gate.acquire()
        assert gate.in_flight == 1
        gate.release()
        assert gate.in_flight == 0

    async def test_guard_releases_on_error(self):
        gate = ConcurrencyGate()
        with pytest.raises(RuntimeError):
            async with gate.guard():
                assert gate.in_flight == 1
                raise RuntimeError("boom")
        assert gate.in_flight == 0

    async def test_with_gate_returns_result(self):
        gate = ConcurrencyGate()

        async def operation():
            assert gate.in_flight == 1
            return 42

        assert await gate.with_gate(operation) == 42
        assert gate.in_flight == 0

    async def test_with_gate_propagates_and_releases(self):
        gate = ConcurrencyGate()

        async def operation():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await gate.with_gate(operation)
        assert gate.in_flight == 0

    async def test_capacity_never_exceeded(self):
        gate = ConcurrencyGate(GateConfig(max_concurrent_operations=3))
        peak = 0

        async def operation():
            nonlocal peak
            peak = max(peak, gate.in_flight)
            await asyncio.sleep(0.01)

        await asyncio.gather(*(gate.with_gate(operation) for _ in range(20)))
        assert peak == 3
        assert gate.in_flight == 0

    async def test_waiter_proceeds_after_release(self):
        gate = ConcurrencyGate(GateConfig(max_concurrent_operations=1))
        await gate.acquire()
        waiter = asyncio.create_task(gate.acquire())
        await asyncio.sleep(0)
        assert not waiter.done()
        gate.release()
        await asyncio.wait_for(waiter, timeout=1)
        assert gate.in_flight == 1
        gate.release()

    def test_repr(self):
        assert repr(ConcurrencyGate()) == "ConcurrencyGate(in_flight=0, capacity=8)"
