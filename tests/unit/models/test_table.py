"""
Unit tests for models.table module.

Tests:
- TableSpec construction and identifier validation
- update_columns, key_of, row_params
- deduplicate(): key collapsing, tie-break by dedup_by, NULL/empty keys
"""

import pytest

from chainmirror.models.table import TableSpec


@pytest.fixture
def delegators() -> TableSpec:
    return TableSpec(
        name="md_pool_delegators",
        columns=("pool_id_bech32", "stake_address", "amount", "active_epoch_no"),
        key_columns=("pool_id_bech32", "stake_address"),
        dedup_by="active_epoch_no",
    )


class TestConstruction:
    """TableSpec validation in __post_init__."""

    def test_valid(self, delegators):
        assert delegators.name == "md_pool_delegators"
        assert delegators.key_columns == ("pool_id_bech32", "stake_address")

    def test_schema_qualified_name(self):
        spec = TableSpec(name="mirror.md_pool_list", columns=("a",), key_columns=("a",))
        assert spec.name == "mirror.md_pool_list"

    @pytest.mark.parametrize("name", ["md-pool", "1table", "md pool", "x;drop table y", ""])
    def test_invalid_table_name(self, name):
        with pytest.raises(ValueError, match="table name"):
            TableSpec(name=name, columns=("a",), key_columns=("a",))

    def test_invalid_column_name(self):
        with pytest.raises(ValueError, match="column name"):
            TableSpec(name="t", columns=("a", "b c"), key_columns=("a",))

    def test_empty_columns(self):
        with pytest.raises(ValueError, match="no columns"):
            TableSpec(name="t", columns=(), key_columns=("a",))

    def test_empty_keys(self):
        with pytest.raises(ValueError, match="no key columns"):
            TableSpec(name="t", columns=("a",), key_columns=())

    def test_duplicate_columns(self):
        with pytest.raises(ValueError, match="duplicate"):
            TableSpec(name="t", columns=("a", "a"), key_columns=("a",))

    def test_key_not_in_columns(self):
        with pytest.raises(ValueError, match="Key columns"):
            TableSpec(name="t", columns=("a",), key_columns=("b",))

    def test_dedup_by_not_in_columns(self):
        with pytest.raises(ValueError, match="dedup_by"):
            TableSpec(name="t", columns=("a",), key_columns=("a",), dedup_by="b")

    def test_frozen(self, delegators):
        with pytest.raises(AttributeError):
            delegators.name = "other"  # type: ignore[misc]


class TestAccessors:
    """Column helpers."""

    def test_update_columns(self, delegators):
        assert delegators.update_columns == ("amount", "active_epoch_no")

    def test_key_of(self, delegators):
        record = {"pool_id_bech32": "pool1", "stake_address": "stake1", "amount": 5}
        assert delegators.key_of(record) == ("pool1", "stake1")

    @pytest.mark.parametrize(
        ("pool", "stake", "expected"),
        [("pool1", "stake1", True), ("", "stake1", False), ("pool1", None, False)],
    )
    def test_has_key(self, delegators, pool, stake, expected):
        record = {"pool_id_bech32": pool, "stake_address": stake}
        assert delegators.has_key(record) is expected

    def test_row_params_fills_missing_with_none(self, delegators):
        record = {"pool_id_bech32": "pool1", "stake_address": "stake1", "extra": "ignored"}
        assert delegators.row_params(record) == ("pool1", "stake1", None, None)


class TestDeduplicate:
    """deduplicate() collapses records sharing an upsert key."""

    def test_distinct_keys_kept_in_order(self, delegators):
        records = [
            {"pool_id_bech32": "p2", "stake_address": "s1"},
            {"pool_id_bech32": "p1", "stake_address": "s1"},
        ]
        assert delegators.deduplicate(records) == records

    def test_greatest_dedup_value_wins(self, delegators):
        old = {"pool_id_bech32": "p1", "stake_address": "s1", "amount": 1, "active_epoch_no": 400}
        new = {"pool_id_bech32": "p1", "stake_address": "s1", "amount": 2, "active_epoch_no": 401}
        assert delegators.deduplicate([new, old]) == [new]
        assert delegators.deduplicate([old, new]) == [new]

    def test_tie_keeps_first(self, delegators):
        first = {"pool_id_bech32": "p1", "stake_address": "s1", "amount": 1, "active_epoch_no": 400}
        second = {"pool_id_bech32": "p1", "stake_address": "s1", "amount": 2, "active_epoch_no": 400}
        assert delegators.deduplicate([first, second]) == [first]

    def test_none_ranks_lowest(self, delegators):
        unknown = {"pool_id_bech32": "p1", "stake_address": "s1", "active_epoch_no": None}
        known = {"pool_id_bech32": "p1", "stake_address": "s1", "active_epoch_no": 1}
        assert delegators.deduplicate([unknown, known]) == [known]
        assert delegators.deduplicate([known, unknown]) == [known]

    def test_without_dedup_by_first_wins(self):
        spec = TableSpec(name="t", columns=("k", "v"), key_columns=("k",))
        records = [{"k": "a", "v": 1}, {"k": "a", "v": 2}]
        assert spec.deduplicate(records) == [{"k": "a", "v": 1}]

    @pytest.mark.parametrize("bad_key", [None, ""])
    def test_null_or_empty_key_skipped(self, delegators, bad_key):
        records = [
            {"pool_id_bech32": bad_key, "stake_address": "s1"},
            {"pool_id_bech32": "p1", "stake_address": "s1"},
        ]
        assert delegators.deduplicate(records) == [records[1]]

    def test_empty_input(self, delegators):
        assert delegators.deduplicate([]) == []
