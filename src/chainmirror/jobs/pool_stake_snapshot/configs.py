"""Pool stake snapshot job configuration."""

from __future__ import annotations

from chainmirror.jobs.common.configs import KeyedJobConfig


class PoolStakeSnapshotConfig(KeyedJobConfig):
    """Configuration of [PoolStakeSnapshotJob][chainmirror.jobs.pool_stake_snapshot.PoolStakeSnapshotJob].

    Uses the default fan-out shape: one unit per pool, three in flight.
    """
