"""Local tables written by the sync jobs.

One [TableSpec][chainmirror.models.table.TableSpec] per mirrored entity.
Column lists follow the upstream function result sets. The document columns
of ``md_pool_list`` (``owners``, ``relays``) are written as the upstream
returns them and stored as ``jsonb``; the DDL lives in
``deployments/postgres/init``.
"""

from __future__ import annotations

from chainmirror.models.table import TableSpec


POOL_LIST = TableSpec(
    name="md_pool_list",
    columns=(
        "pool_id_bech32",
        "pool_id_hex",
        "active_epoch_no",
        "margin",
        "fixed_cost",
        "pledge",
        "deposit",
        "reward_addr",
        "owners",
        "relays",
        "ticker",
        "pool_group",
        "meta_url",
        "meta_hash",
        "pool_status",
        "active_stake",
        "retiring_epoch",
    ),
    key_columns=("pool_id_bech32",),
    dedup_by="active_epoch_no",
)

POOL_DELEGATORS = TableSpec(
    name="md_pool_delegators",
    columns=(
        "pool_id_bech32",
        "stake_address",
        "amount",
        "active_epoch_no",
        "latest_delegation_tx_hash",
    ),
    key_columns=("pool_id_bech32", "stake_address"),
    dedup_by="active_epoch_no",
)

POOL_STAKE_SNAPSHOT = TableSpec(
    name="md_pool_stake_snapshot",
    columns=(
        "pool_id_bech32",
        "snapshot",
        "epoch_no",
        "nonce",
        "pool_stake",
        "active_stake",
    ),
    key_columns=("pool_id_bech32", "epoch_no"),
)

UTXO_INFO = TableSpec(
    name="md_utxo_info",
    columns=("tx_hash", "tx_index", "stake_address", "epoch_no", "block_time"),
    key_columns=("tx_hash", "tx_index"),
    dedup_by="block_time",
)
