"""Pool delegators job configuration."""

from __future__ import annotations

from pydantic import Field

from chainmirror.core.orchestrator import OrchestratorConfig
from chainmirror.jobs.common.configs import KeyedJobConfig


def _default_fan_out() -> OrchestratorConfig:
    return OrchestratorConfig(unit_size=1, max_concurrency=4, unit_delay=0.2)


class PoolDelegatorsConfig(KeyedJobConfig):
    """Configuration of [PoolDelegatorsJob][chainmirror.jobs.pool_delegators.PoolDelegatorsJob].

    One unit per pool, four in flight, 200 ms apart. The run waits for the
    retry queue by default, so ``md_pool_delegators`` is complete before
    [UtxoInfoJob][chainmirror.jobs.utxo_info.UtxoInfoJob] reads it.
    """

    orchestrator: OrchestratorConfig = Field(
        default_factory=_default_fan_out, description="Fan-out shape of the batched fetch"
    )
    await_retry_drain: bool = Field(
        default=True, description="Wait for the retry queue to empty before completing"
    )
