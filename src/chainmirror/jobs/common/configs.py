"""Configuration models shared by the sync jobs."""

from __future__ import annotations

from pydantic import Field

from chainmirror.core.base_job import BaseJobConfig
from chainmirror.core.orchestrator import OrchestratorConfig


class SnapshotJobConfig(BaseJobConfig):
    """Configuration of a job that mirrors one upstream result set in a single call."""


class KeyedJobConfig(BaseJobConfig):
    """Configuration of a job that fans out over a driving key set.

    Attributes:
        orchestrator: Fan-out shape (unit size, concurrency, pacing, inline
            retries). See
            [OrchestratorConfig][chainmirror.core.orchestrator.OrchestratorConfig].
    """

    orchestrator: OrchestratorConfig = Field(
        default_factory=OrchestratorConfig, description="Fan-out shape of the batched fetch"
    )
