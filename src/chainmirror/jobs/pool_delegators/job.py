"""
Pool delegators job: mirror the current delegators of every pool.

Drives one ``pool_delegators(pool)`` call per pool id found in
``md_pool_list`` and refreshes ``md_pool_delegators`` with the merged rows.
The upstream rows do not carry the pool id, so it is attached from the
unit's key.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, ClassVar

import asyncpg

from chainmirror.jobs.common import queries, tables
from chainmirror.jobs.common.keyed import KeyedSyncJob
from chainmirror.models.constants import JobName
from chainmirror.models.table import TableSpec

from .configs import PoolDelegatorsConfig


class PoolDelegatorsJob(KeyedSyncJob[PoolDelegatorsConfig]):
    """Refresh ``md_pool_delegators`` with a per-pool fan-out."""

    JOB_NAME: ClassVar[JobName] = JobName.POOL_DELEGATORS
    CONFIG_CLASS: ClassVar[type[PoolDelegatorsConfig]] = PoolDelegatorsConfig
    TABLE: ClassVar[TableSpec] = tables.POOL_DELEGATORS
    TABLES: ClassVar[tuple[TableSpec, ...]] = (tables.POOL_DELEGATORS,)
    KEYS_QUERY: ClassVar[str] = queries.POOL_IDS

    def build_query(self, schema: str) -> str:
        return queries.pool_delegators(schema)

    def shape_row(self, keys: Sequence[str], record: asyncpg.Record) -> dict[str, Any]:
        return {**dict(record), "pool_id_bech32": keys[0]}
