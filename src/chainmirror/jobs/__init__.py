"""Sync jobs.

Each job mirrors one upstream result set into one local table:

| Job | Upstream function | Local table | Driving keys |
|-----|-------------------|-------------|--------------|
| ``pool_list`` | ``pool_list()`` | ``md_pool_list`` | none |
| ``pool_delegators`` | ``pool_delegators(pool)`` | ``md_pool_delegators`` | pool ids |
| ``pool_stake_snapshot`` | ``pool_stake_snapshot(pool)`` | ``md_pool_stake_snapshot`` | pool ids |
| ``utxo_info`` | ``utxo_info(refs)`` | ``md_utxo_info`` | delegation tx hashes |

Attributes:
    JOB_REGISTRY: Job name to job class, in dependency order.
"""

from __future__ import annotations

from typing import Any

from chainmirror.core.base_job import BaseJob
from chainmirror.models.constants import JobName

from .pool_delegators import PoolDelegatorsConfig, PoolDelegatorsJob
from .pool_list import PoolListConfig, PoolListJob
from .pool_stake_snapshot import PoolStakeSnapshotConfig, PoolStakeSnapshotJob
from .utxo_info import UtxoInfoConfig, UtxoInfoJob


JOB_REGISTRY: dict[str, type[BaseJob[Any]]] = {
    JobName.POOL_LIST: PoolListJob,
    JobName.POOL_DELEGATORS: PoolDelegatorsJob,
    JobName.POOL_STAKE_SNAPSHOT: PoolStakeSnapshotJob,
    JobName.UTXO_INFO: UtxoInfoJob,
}


__all__ = [
    "JOB_REGISTRY",
    "PoolDelegatorsConfig",
    "PoolDelegatorsJob",
    "PoolListConfig",
    "PoolListJob",
    "PoolStakeSnapshotConfig",
    "PoolStakeSnapshotJob",
    "UtxoInfoConfig",
    "UtxoInfoJob",
]
