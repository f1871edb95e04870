"""
Unit tests for core.store module.

Tests:
- Configuration models (BatchConfig, StoreTimeoutsConfig, StoreConfig)
- Statement builders (build_upsert, build_delete)
- Batch sizing under the bind-parameter limit
- refresh(): delete then batched upserts, deduplication, idempotent arguments
- refresh() in atomic mode: one transaction, one gate permit
- A failing batch aborts the remaining ones and propagates
- upsert(), fetch_keys(), table_stats()
- Keyless records skipped with a warning
"""

import logging
from unittest.mock import AsyncMock, call

import pytest
from pydantic import ValidationError

from chainmirror.core.gate import ConcurrencyGate, GateConfig
from chainmirror.core.store import (
    BatchConfig,
    Store,
    StoreConfig,
    StoreTimeoutsConfig,
    build_delete,
    build_upsert,
)
from chainmirror.models.table import TableSpec


SPEC = TableSpec(
    name="md_pool_delegators",
    columns=("pool_id_bech32", "stake_address", "amount"),
    key_columns=("pool_id_bech32", "stake_address"),
)


def _record(pool: str, stake: str, amount: int = 1) -> dict:
    return {"pool_id_bech32": pool, "stake_address": stake, "amount": amount}


def _executed(mock_connection) -> list[str]:
    return [c.args[0] for c in mock_connection.execute.await_args_list]


class TestConfig:
    """Store configuration models."""

    def test_defaults(self):
        config = StoreConfig()
        assert config.batch.max_size == 500
        assert config.timeouts.query == 60.0
        assert config.timeouts.batch == 120.0
        assert config.atomic_refresh is False

    def test_batch_bounds(self):
        with pytest.raises(ValidationError):
            BatchConfig(max_size=0)

    def test_timeout_none_allowed(self):
        assert StoreTimeoutsConfig(query=None).query is None

    def test_timeout_too_small(self):
        with pytest.raises(ValidationError, match="Timeout"):
            StoreTimeoutsConfig(batch=0.01)


class TestStatementBuilders:
    """SQL text generation."""

    def test_upsert_two_rows(self):
        assert build_upsert(SPEC, 2) == (
            "INSERT INTO md_pool_delegators (pool_id_bech32, stake_address, amount) "
            "VALUES ($1, $2, $3), ($4, $5, $6) "
            "ON CONFLICT (pool_id_bech32, stake_address) DO UPDATE SET amount = EXCLUDED.amount"
        )

    def test_upsert_all_key_columns(self):
        spec = TableSpec(name="t", columns=("a", "b"), key_columns=("a", "b"))
        assert build_upsert(spec, 1) == (
            "INSERT INTO t (a, b) VALUES ($1, $2) ON CONFLICT (a, b) DO NOTHING"
        )

    def test_delete(self):
        assert build_delete(SPEC) == "DELETE FROM md_pool_delegators"


class TestBatchSize:
    """Batches respect both max_size and the 32767 parameter limit."""

    def test_configured_size(self, mock_pool, gate):
        store = Store(mock_pool, gate, StoreConfig(batch=BatchConfig(max_size=100)))
        assert store.batch_size(SPEC) == 100

    def test_parameter_limit(self, mock_pool, gate):
        wide = TableSpec(name="t", columns=tuple(f"c{i}" for i in range(17)), key_columns=("c0",))
        store = Store(mock_pool, gate, StoreConfig(batch=BatchConfig(max_size=10_000)))
        assert store.batch_size(wide) == 32_767 // 17


class TestRefresh:
    """Full refresh: delete then batched upserts."""

    async def test_delete_then_batches(self, mock_pool, mock_connection, gate):
        store = Store(mock_pool, gate, StoreConfig(batch=BatchConfig(max_size=2)))
        records = [_record("p1", f"s{i}", i) for i in range(5)]

        written = await store.refresh(SPEC, records)

        assert written == 5
        statements = _executed(mock_connection)
        assert statements[0] == "DELETE FROM md_pool_delegators"
        assert statements[1:] == [build_upsert(SPEC, 2), build_upsert(SPEC, 2), build_upsert(SPEC, 1)]
        first_batch = mock_connection.execute.await_args_list[1]
        assert first_batch.args[1:] == ("p1", "s0", 0, "p1", "s1", 1)
        assert gate.in_flight == 0

    async def test_deduplicates_before_writing(self, store, mock_connection):
        records = [_record("p1", "s1", 1), _record("p1", "s1", 2), _record("p1", "s2", 3)]
        written = await store.refresh(SPEC, records)
        assert written == 2
        insert = mock_connection.execute.await_args_list[1]
        assert insert.args[1:] == ("p1", "s1", 1, "p1", "s2", 3)

    async def test_empty_refresh_set_clears_table(self, store, mock_connection):
        written = await store.refresh(SPEC, [])
        assert written == 0
        assert _executed(mock_connection) == ["DELETE FROM md_pool_delegators"]

    async def test_repeat_refresh_issues_identical_statements(self, store, mock_connection):
        records = [_record("p1", "s1"), _record("p2", "s1")]
        await store.refresh(SPEC, records)
        first = list(mock_connection.execute.await_args_list)
        mock_connection.execute.reset_mock()
        await store.refresh(SPEC, records)
        assert list(mock_connection.execute.await_args_list) == first

    async def test_failed_batch_aborts_remaining(self, mock_pool, mock_connection, gate):
        store = Store(mock_pool, gate, StoreConfig(batch=BatchConfig(max_size=1)))
        mock_connection.execute = AsyncMock(side_effect=["DELETE 3", "INSERT 0 1", ValueError("bad")])

        with pytest.raises(ValueError, match="bad"):
            await store.refresh(SPEC, [_record("p1", "s1"), _record("p1", "s2"), _record("p1", "s3")])

        assert mock_connection.execute.await_count == 3
        assert gate.in_flight == 0

    async def test_batch_timeout_passed(self, store, mock_connection):
        await store.refresh(SPEC, [_record("p1", "s1")])
        for c in mock_connection.execute.await_args_list:
            assert c.kwargs["timeout"] == 120.0


class TestAtomicRefresh:
    """Refresh inside one transaction under one permit."""

    async def test_single_transaction(self, mock_pool, mock_connection):
        gate = ConcurrencyGate(GateConfig(max_concurrent_operations=1))
        store = Store(
            mock_pool, gate, StoreConfig(batch=BatchConfig(max_size=1), atomic_refresh=True)
        )
        permits_seen = []

        async def execute(query, *args, timeout=None):
            permits_seen.append(gate.in_flight)
            return "OK"

        mock_connection.execute = AsyncMock(side_effect=execute)

        written = await store.refresh(SPEC, [_record("p1", "s1"), _record("p1", "s2")])

        assert written == 2
        mock_connection.transaction.assert_called_once()
        assert _executed(mock_connection)[0] == "DELETE FROM md_pool_delegators"
        assert permits_seen == [1, 1, 1]
        assert gate.in_flight == 0

    async def test_failure_propagates(self, mock_pool, mock_connection, gate):
        store = Store(mock_pool, gate, StoreConfig(atomic_refresh=True))
        mock_connection.execute = AsyncMock(side_effect=["DELETE 1", ValueError("constraint")])
        with pytest.raises(ValueError, match="constraint"):
            await store.refresh(SPEC, [_record("p1", "s1")])
        transaction = mock_connection.transaction.return_value
        assert transaction.__aexit__.await_args.args[0] is ValueError


class TestUpsert:
    """Merge without delete."""

    async def test_no_delete(self, store, mock_connection):
        written = await store.upsert(SPEC, [_record("p1", "s1"), _record("", "s2")])
        assert written == 1
        assert _executed(mock_connection) == [build_upsert(SPEC, 1)]

    async def test_empty(self, store, mock_connection):
        assert await store.upsert(SPEC, []) == 0
        mock_connection.execute.assert_not_awaited()


class TestKeylessRecords:
    """Records missing part of the upsert key are skipped and reported."""

    async def test_skipped_count_logged(self, store, caplog):
        records = [_record("p1", "s1"), _record("", "s2"), _record("p2", None)]
        with caplog.at_level(logging.WARNING):
            assert await store.refresh(SPEC, records) == 1

        [warning] = [r for r in caplog.records if r.message == "records_skipped_no_key"]
        assert warning.structured_kv == {
            "table": "md_pool_delegators",
            "skipped": 2,
            "key": "pool_id_bech32,stake_address",
        }

    async def test_complete_keys_not_logged(self, store, caplog):
        with caplog.at_level(logging.WARNING):
            await store.upsert(SPEC, [_record("p1", "s1")])
        assert "records_skipped_no_key" not in caplog.text


class TestReads:
    """Driving keys and statistics."""

    async def test_fetch_keys_drops_nulls(self, store, mock_connection):
        mock_connection.fetch = AsyncMock(return_value=[("pool1",), (None,), ("pool2",)])
        keys = await store.fetch_keys("SELECT DISTINCT pool_id_bech32 FROM md_pool_list")
        assert keys == ["pool1", "pool2"]
        assert mock_connection.fetch.await_args == call(
            "SELECT DISTINCT pool_id_bech32 FROM md_pool_list", timeout=60.0
        )

    async def test_table_stats(self, store, mock_connection):
        mock_connection.fetchval = AsyncMock(side_effect=[10, None])
        other = TableSpec(name="md_utxo_info", columns=("tx_hash",), key_columns=("tx_hash",))
        stats = await store.table_stats([SPEC, other])
        assert stats == {"md_pool_delegators": 10, "md_utxo_info": 0}


class TestFactory:
    """Store factory methods."""

    def test_from_dict(self, gate):
        store = Store.from_dict(
            {"pool": {"database": {"host": "db"}}, "store": {"atomic_refresh": True}}, gate=gate
        )
        assert store.pool.config.database.host == "db"
        assert store.config.atomic_refresh is True

    def test_from_yaml(self, gate, tmp_path):
        path = tmp_path / "chainmirror.yaml"
        path.write_text("store:\n  batch:\n    max_size: 50\n")
        store = Store.from_yaml(str(path), gate=gate)
        assert store.config.batch.max_size == 50
