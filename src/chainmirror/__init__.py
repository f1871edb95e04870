r"""chainmirror -- resilient mirroring of upstream chain-index data into PostgreSQL.

Scheduled jobs read from a named list of upstream PostgreSQL sources and
rewrite local tables with the results. Reads go through a resilient executor
(retry, failover, circuit breaking) under one process-wide concurrency gate;
large key sets fan out through a capped orchestrator, and units that fail
are retried later by a background queue.

Imports flow strictly downward:

```text
              jobs             Concrete sync jobs and their SQL
               |
              core             Engine: gate, executor, orchestrator,
               |               retry queue, store, scheduler, logging
              models           Pure dataclasses and enums (zero I/O)
```

Attributes:
    models: Work units, table descriptions, and enums.
    core: The synchronization engine and its ambient stack.
    jobs: The four sync jobs and [JOB_REGISTRY][chainmirror.jobs.JOB_REGISTRY].
    config: [AppConfig][chainmirror.config.AppConfig], the root configuration.

Note:
    Top-level imports (``from chainmirror import Store``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("chainmirror")

__all__ = [
    "AppConfig",
    "BaseJob",
    "BatchOrchestrator",
    "ConcurrencyGate",
    "FailedBatchRetryQueue",
    "JOB_REGISTRY",
    "JobName",
    "Logger",
    "Pool",
    "PoolConfig",
    "ResilientQueryExecutor",
    "Scheduler",
    "Store",
    "TableSpec",
    "WorkUnit",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "AppConfig": ("chainmirror.config", "AppConfig"),
    "BaseJob": ("chainmirror.core", "BaseJob"),
    "BatchOrchestrator": ("chainmirror.core", "BatchOrchestrator"),
    "ConcurrencyGate": ("chainmirror.core", "ConcurrencyGate"),
    "FailedBatchRetryQueue": ("chainmirror.core", "FailedBatchRetryQueue"),
    "Logger": ("chainmirror.core", "Logger"),
    "Pool": ("chainmirror.core", "Pool"),
    "PoolConfig": ("chainmirror.core", "PoolConfig"),
    "ResilientQueryExecutor": ("chainmirror.core", "ResilientQueryExecutor"),
    "Scheduler": ("chainmirror.core", "Scheduler"),
    "Store": ("chainmirror.core", "Store"),
    "JobName": ("chainmirror.models", "JobName"),
    "TableSpec": ("chainmirror.models", "TableSpec"),
    "WorkUnit": ("chainmirror.models", "WorkUnit"),
    "JOB_REGISTRY": ("chainmirror.jobs", "JOB_REGISTRY"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'chainmirror' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
