"""Core layer: the resilient synchronization engine.

Sits between ``chainmirror.models`` (below) and ``chainmirror.jobs`` (above).

Attributes:
    ConcurrencyGate: Process-wide permit pool bounding outbound database
        operations. See [ConcurrencyGate][chainmirror.core.gate.ConcurrencyGate].
    ResilientQueryExecutor: Upstream reads with retry, failover, and circuit
        breaking. See
        [ResilientQueryExecutor][chainmirror.core.executor.ResilientQueryExecutor].
    CircuitBreakerRegistry: Per-source failure bookkeeping owned by the
        executor.
    BatchOrchestrator: Capped fan-out with per-unit failure isolation.
    FailedBatchRetryQueue: Deferred, time-driven retries of failed units.
    Store: Local write path (full refresh and per-unit upsert) over a
        [Pool][chainmirror.core.pool.Pool].
    BaseJob: Scheduling contract shared by every job.
    Scheduler: In-process interval and one-shot trigger source.
    Logger: Structured key=value / JSON logging.
    MetricsServer: Prometheus ``/metrics`` endpoint.
"""

from .base_job import BaseJob, BaseJobConfig, ConfigT, Rescheduler
from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .exceptions import (
    ChainMirrorError,
    ConfigurationError,
    ConnectionPoolError,
    DatabaseError,
    JobAlreadyRunningError,
    JobError,
    QueryError,
    SourceError,
    SourcesUnavailableError,
)
from .executor import (
    ResilientQueryExecutor,
    SourceConfig,
    SourceHealth,
    SourcesConfig,
    is_retriable,
)
from .gate import ConcurrencyGate, GateConfig
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import MetricsConfig, MetricsServer, start_metrics_server
from .orchestrator import BatchOrchestrator, BatchOutcome, OrchestratorConfig
from .pool import DatabaseConfig, Pool, PoolConfig
from .retry_queue import FailedBatchRetryQueue, RetryQueueConfig
from .scheduler import Scheduler, SchedulerConfig
from .store import Store, StoreConfig
from .yaml import load_yaml


__all__ = [
    "BaseJob",
    "BaseJobConfig",
    "BatchOrchestrator",
    "BatchOutcome",
    "ChainMirrorError",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "ConcurrencyGate",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "DatabaseConfig",
    "DatabaseError",
    "FailedBatchRetryQueue",
    "GateConfig",
    "JobAlreadyRunningError",
    "JobError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "OrchestratorConfig",
    "Pool",
    "PoolConfig",
    "QueryError",
    "Rescheduler",
    "ResilientQueryExecutor",
    "RetryQueueConfig",
    "Scheduler",
    "SchedulerConfig",
    "SourceConfig",
    "SourceError",
    "SourceHealth",
    "SourcesConfig",
    "SourcesUnavailableError",
    "Store",
    "StoreConfig",
    "StructuredFormatter",
    "format_kv_pairs",
    "is_retriable",
    "load_yaml",
    "start_metrics_server",
]
