"""Shared constants for the models layer.

Enumerations used across the core and jobs layers. Kept in the models layer
so that both can depend on them without circular imports.

See Also:
    [CircuitBreakerRegistry][chainmirror.core.circuit_breaker.CircuitBreakerRegistry]:
        Derives [CircuitState][chainmirror.models.constants.CircuitState]
        per upstream source.
    [BaseJob][chainmirror.core.base_job.BaseJob]: Exposes
        [JobState][chainmirror.models.constants.JobState] and is keyed by
        [JobName][chainmirror.models.constants.JobName].
"""

from __future__ import annotations

from enum import StrEnum


class JobName(StrEnum):
    """Canonical job identifiers used in logging, metrics, and retry routing.

    The string values double as the scheduler identity (one running instance
    per name), the ``job`` label in Prometheus metrics, and the routing key
    stored on every [WorkUnit][chainmirror.models.work_unit.WorkUnit].

    Attributes:
        POOL_LIST: Single-call refresh of the stake pool registry.
        POOL_DELEGATORS: Per-pool fan-out of current delegators.
        POOL_STAKE_SNAPSHOT: Per-pool fan-out of stake snapshots.
        UTXO_INFO: Chunked fan-out over delegation transaction outputs.
    """

    POOL_LIST = "pool_list"
    POOL_DELEGATORS = "pool_delegators"
    POOL_STAKE_SNAPSHOT = "pool_stake_snapshot"
    UTXO_INFO = "utxo_info"


class CircuitState(StrEnum):
    """Health state of an upstream source, derived lazily at selection time.

    Attributes:
        CLOSED: Below the failure threshold, eligible for selection.
        OPEN: At or above the threshold and still cooling down, skipped.
        HALF_OPEN: At or above the threshold but the cooldown has elapsed;
            eligible again, and one more failure re-opens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class JobState(StrEnum):
    """Lifecycle state of a job identity: ``IDLE -> RUNNING -> {IDLE, FAILED}``."""

    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"
