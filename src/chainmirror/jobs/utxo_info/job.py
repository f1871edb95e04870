"""
UTxO info job: mirror the outputs of the latest delegation transactions.

Reads every ``latest_delegation_tx_hash`` from ``md_pool_delegators`` as an
output reference (``<tx_hash>#0``), looks the references up with
``utxo_info(refs)`` in fixed-size chunks, and refreshes ``md_utxo_info``.
Run it after
[PoolDelegatorsJob][chainmirror.jobs.pool_delegators.PoolDelegatorsJob];
until that table is populated the job reschedules itself.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, ClassVar

from chainmirror.jobs.common import queries, tables
from chainmirror.jobs.common.keyed import KeyedSyncJob
from chainmirror.models.constants import JobName
from chainmirror.models.table import TableSpec

from .configs import UtxoInfoConfig


class UtxoInfoJob(KeyedSyncJob[UtxoInfoConfig]):
    """Refresh ``md_utxo_info`` with a chunked fan-out."""

    JOB_NAME: ClassVar[JobName] = JobName.UTXO_INFO
    CONFIG_CLASS: ClassVar[type[UtxoInfoConfig]] = UtxoInfoConfig
    TABLE: ClassVar[TableSpec] = tables.UTXO_INFO
    TABLES: ClassVar[tuple[TableSpec, ...]] = (tables.UTXO_INFO,)
    KEYS_QUERY: ClassVar[str] = queries.DELEGATION_UTXO_REFS

    def build_query(self, schema: str) -> str:
        return queries.utxo_info(schema)

    def query_params(self, keys: Sequence[str]) -> tuple[Any, ...]:
        return (list(keys),)
