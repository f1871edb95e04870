"""Shared building blocks of the sync jobs.

Attributes:
    configs: [KeyedJobConfig][chainmirror.jobs.common.configs.KeyedJobConfig]
        and [SnapshotJobConfig][chainmirror.jobs.common.configs.SnapshotJobConfig].
    keyed: The two generic job shapes,
        [SnapshotSyncJob][chainmirror.jobs.common.keyed.SnapshotSyncJob] and
        [KeyedSyncJob][chainmirror.jobs.common.keyed.KeyedSyncJob].
    queries: Driving-key queries against the local store and upstream query
        builders, centralized in one module.
    tables: One [TableSpec][chainmirror.models.table.TableSpec] per mirrored
        table.
"""

from . import queries, tables
from .configs import KeyedJobConfig, SnapshotJobConfig
from .keyed import KeyedSyncJob, SnapshotSyncJob


__all__ = [
    "KeyedJobConfig",
    "KeyedSyncJob",
    "SnapshotJobConfig",
    "SnapshotSyncJob",
    "queries",
    "tables",
]
