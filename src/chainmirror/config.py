"""
Root configuration of a chainmirror process.

One YAML file configures the whole process. Each top-level section maps to
the configuration model of the component that consumes it:

| Section | Model |
|---------|-------|
| ``pool`` | [PoolConfig][chainmirror.core.pool.PoolConfig] (local store connection) |
| ``store`` | [StoreConfig][chainmirror.core.store.StoreConfig] |
| ``sources`` | [SourcesConfig][chainmirror.core.executor.SourcesConfig] (upstreams, retry, failover, circuit breaker) |
| ``gate`` | [GateConfig][chainmirror.core.gate.GateConfig] |
| ``retry_queue`` | [RetryQueueConfig][chainmirror.core.retry_queue.RetryQueueConfig] |
| ``metrics`` | [MetricsConfig][chainmirror.core.metrics.MetricsConfig] |
| ``scheduler`` | [SchedulerConfig][chainmirror.core.scheduler.SchedulerConfig] |
| ``jobs`` | per-job dicts, parsed by each job's ``CONFIG_CLASS`` |

Examples:
    ```yaml
    sources:
      sources:
        - name: primary
          host: koios-db-1
        - name: secondary
          host: koios-db-2
      failover_order: [primary, secondary]
    jobs:
      utxo_info:
        interval: 43200
        orchestrator:
          unit_size: 100
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from chainmirror.core.executor import SourcesConfig
from chainmirror.core.gate import GateConfig
from chainmirror.core.metrics import MetricsConfig
from chainmirror.core.pool import PoolConfig
from chainmirror.core.retry_queue import RetryQueueConfig
from chainmirror.core.scheduler import SchedulerConfig
from chainmirror.core.store import StoreConfig
from chainmirror.core.yaml import load_yaml
from chainmirror.models.constants import JobName


class AppConfig(BaseModel):
    """Every section of the process configuration."""

    pool: PoolConfig = Field(default_factory=PoolConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    retry_queue: RetryQueueConfig = Field(default_factory=RetryQueueConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    jobs: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-job configuration, keyed by job name"
    )

    @field_validator("jobs", mode="before")
    @classmethod
    def validate_job_names(cls, v: Any) -> Any:
        """Reject unknown job names; an empty section (``pool_list:``) means defaults."""
        if not isinstance(v, dict):
            return v
        known = {str(name) for name in JobName}
        unknown = sorted(set(v) - known)
        if unknown:
            raise ValueError(f"unknown jobs in configuration: {unknown}")
        return {name: section or {} for name, section in v.items()}

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> AppConfig:
        """Load the configuration from a YAML file."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        return cls(**data)

    def job_config(self, job_name: str) -> dict[str, Any]:
        """Configuration dict of one job, inheriting the process metrics settings.

        A ``metrics`` key inside the job's own section takes precedence.
        """
        section = dict(self.jobs.get(str(job_name), {}))
        section.setdefault("metrics", self.metrics.model_dump())
        return section
