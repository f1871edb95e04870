"""
Pool stake snapshot job: mirror the mark/set/go snapshots of every pool.

Drives one ``pool_stake_snapshot(pool)`` call per pool id found in
``md_pool_list`` and refreshes ``md_pool_stake_snapshot``, keyed by pool
and epoch.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, ClassVar

import asyncpg

from chainmirror.jobs.common import queries, tables
from chainmirror.jobs.common.keyed import KeyedSyncJob
from chainmirror.models.constants import JobName
from chainmirror.models.table import TableSpec

from .configs import PoolStakeSnapshotConfig


class PoolStakeSnapshotJob(KeyedSyncJob[PoolStakeSnapshotConfig]):
    """Refresh ``md_pool_stake_snapshot`` with a per-pool fan-out."""

    JOB_NAME: ClassVar[JobName] = JobName.POOL_STAKE_SNAPSHOT
    CONFIG_CLASS: ClassVar[type[PoolStakeSnapshotConfig]] = PoolStakeSnapshotConfig
    TABLE: ClassVar[TableSpec] = tables.POOL_STAKE_SNAPSHOT
    TABLES: ClassVar[tuple[TableSpec, ...]] = (tables.POOL_STAKE_SNAPSHOT,)
    KEYS_QUERY: ClassVar[str] = queries.POOL_IDS

    def build_query(self, schema: str) -> str:
        return queries.pool_stake_snapshot(schema)

    def shape_row(self, keys: Sequence[str], record: asyncpg.Record) -> dict[str, Any]:
        return {**dict(record), "pool_id_bech32": keys[0]}
