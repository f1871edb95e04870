"""Pool list job configuration."""

from __future__ import annotations

from chainmirror.jobs.common.configs import SnapshotJobConfig


class PoolListConfig(SnapshotJobConfig):
    """Configuration of [PoolListJob][chainmirror.jobs.pool_list.PoolListJob].

    The pool list has no driving key set, so only the trigger and metrics
    fields of the base configuration apply.
    """
