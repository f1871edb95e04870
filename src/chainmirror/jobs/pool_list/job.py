"""
Pool list job: mirror the registered stake pools.

Issues one ``pool_list()`` call against the upstream and replaces the
contents of ``md_pool_list`` with the result. A pool reported more than once
keeps the row with the highest ``active_epoch_no``.

The pool ids written here drive
[PoolDelegatorsJob][chainmirror.jobs.pool_delegators.PoolDelegatorsJob] and
[PoolStakeSnapshotJob][chainmirror.jobs.pool_stake_snapshot.PoolStakeSnapshotJob],
so this job should run first.
"""

from __future__ import annotations

from typing import ClassVar

from chainmirror.jobs.common import queries, tables
from chainmirror.jobs.common.keyed import SnapshotSyncJob
from chainmirror.models.constants import JobName
from chainmirror.models.table import TableSpec

from .configs import PoolListConfig


class PoolListJob(SnapshotSyncJob[PoolListConfig]):
    """Refresh ``md_pool_list`` from ``pool_list()``."""

    JOB_NAME: ClassVar[JobName] = JobName.POOL_LIST
    CONFIG_CLASS: ClassVar[type[PoolListConfig]] = PoolListConfig
    TABLE: ClassVar[TableSpec] = tables.POOL_LIST
    TABLES: ClassVar[tuple[TableSpec, ...]] = (tables.POOL_LIST,)

    def build_query(self, schema: str) -> str:
        return queries.pool_list(schema)
