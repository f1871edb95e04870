"""UTxO info job configuration."""

from __future__ import annotations

from pydantic import Field

from chainmirror.core.orchestrator import OrchestratorConfig
from chainmirror.jobs.common.configs import KeyedJobConfig


def _default_fan_out() -> OrchestratorConfig:
    return OrchestratorConfig(unit_size=200, max_concurrency=3, unit_delay=2.0)


class UtxoInfoConfig(KeyedJobConfig):
    """Configuration of [UtxoInfoJob][chainmirror.jobs.utxo_info.UtxoInfoJob].

    Chunks of 200 output references per call, three calls in flight, two
    seconds apart.
    """

    orchestrator: OrchestratorConfig = Field(
        default_factory=_default_fan_out, description="Fan-out shape of the batched fetch"
    )
