"""SQL used by the sync jobs.

Two families live here:

- **Driving-key queries** run against the local store through
  [Store.fetch_keys()][chainmirror.core.store.Store.fetch_keys]. They read
  prerequisite tables written by earlier jobs (pool ids from
  ``md_pool_list``, delegation transactions from ``md_pool_delegators``).
- **Upstream queries** run through the
  [ResilientQueryExecutor][chainmirror.core.executor.ResilientQueryExecutor]
  against the indexer's function schema (``grest`` by default). Each
  builder takes the schema name so it can be configured per deployment.

Every upstream query orders its result explicitly; the executor never
reorders rows.
"""

from __future__ import annotations

from typing import Final


# =============================================================================
# Driving keys (local store)
# =============================================================================

POOL_IDS: Final = """
    SELECT DISTINCT pool_id_bech32
    FROM md_pool_list
    WHERE pool_id_bech32 IS NOT NULL AND pool_id_bech32 <> ''
    ORDER BY pool_id_bech32
"""

DELEGATION_UTXO_REFS: Final = """
    SELECT DISTINCT latest_delegation_tx_hash || '#0'
    FROM md_pool_delegators
    WHERE latest_delegation_tx_hash IS NOT NULL AND latest_delegation_tx_hash <> ''
    ORDER BY 1
"""


# =============================================================================
# Upstream functions
# =============================================================================

UPSTREAM_FUNCTIONS: Final = ("pool_list", "pool_delegators", "pool_stake_snapshot", "utxo_info")
"""Functions every upstream source must expose in its schema."""


def pool_list(schema: str) -> str:
    """Every registered pool, one row per pool."""
    return f"SELECT * FROM {schema}.pool_list() ORDER BY pool_id_bech32"  # noqa: S608


def pool_delegators(schema: str) -> str:
    """Current delegators of pool ``$1``."""
    return f"SELECT * FROM {schema}.pool_delegators($1) ORDER BY amount DESC"  # noqa: S608


def pool_stake_snapshot(schema: str) -> str:
    """Mark/set/go stake snapshots of pool ``$1``."""
    return f"SELECT * FROM {schema}.pool_stake_snapshot($1) ORDER BY epoch_no DESC"  # noqa: S608


def utxo_info(schema: str) -> str:
    """Outputs referenced by the ``tx_hash#index`` array ``$1``."""
    return (
        "SELECT tx_hash, tx_index, stake_address, epoch_no, block_time "  # noqa: S608
        f"FROM {schema}.utxo_info($1::text[]) ORDER BY tx_hash, tx_index"
    )
