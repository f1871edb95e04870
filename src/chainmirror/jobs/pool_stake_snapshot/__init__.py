"""Pool stake snapshot job package.

Re-exports the public symbols::

    from chainmirror.jobs.pool_stake_snapshot import (
        PoolStakeSnapshotConfig,
        PoolStakeSnapshotJob,
    )
"""

from .configs import PoolStakeSnapshotConfig
from .job import PoolStakeSnapshotJob


__all__ = [
    "PoolStakeSnapshotConfig",
    "PoolStakeSnapshotJob",
]
