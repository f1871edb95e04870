"""
Write-side description of a mirrored table.

A [TableSpec][chainmirror.models.table.TableSpec] names the local table, its
column list, its upsert key and the tie-break column used to collapse
duplicate keys. It is the only thing a job declares about its write path;
statement construction lives in [Store][chainmirror.core.store.Store].

All validation happens in ``__post_init__`` so an invalid spec never escapes
the constructor. Identifiers are interpolated into SQL, so each one must be a
plain SQL identifier.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final


_IDENTIFIER: Final = re.compile(r"^[a-z_][a-z0-9_]*$", re.IGNORECASE)


def _validate_identifier(value: str, what: str) -> None:
    if not _IDENTIFIER.match(value):
        raise ValueError(
            f"Invalid {what} '{value}': must be a valid SQL identifier "
            "(letters, numbers, underscores)"
        )


@dataclass(frozen=True, slots=True)
class TableSpec:
    """Immutable description of a local table written by a sync job.

    Attributes:
        name: Table name, optionally schema-qualified (``schema.table``).
        columns: Columns written, in statement order.
        key_columns: Upsert key used in ``ON CONFLICT``. Must be a subset
            of ``columns``.
        dedup_by: Column compared when two records share a key; the record
            with the greatest value wins. ``None`` keeps the first record.

    Raises:
        ValueError: On an empty column list, an invalid identifier, or a
            key or tie-break column missing from ``columns``.

    Examples:
        ```python
        spec = TableSpec(
            name="md_pool_delegators",
            columns=("pool_id_bech32", "stake_address", "amount", "active_epoch_no"),
            key_columns=("pool_id_bech32", "stake_address"),
            dedup_by="active_epoch_no",
        )
        spec.update_columns  # ('amount', 'active_epoch_no')
        ```
    """

    name: str
    columns: tuple[str, ...]
    key_columns: tuple[str, ...]
    dedup_by: str | None = None

    def __post_init__(self) -> None:
        for part in self.name.split("."):
            _validate_identifier(part, "table name")
        if not self.columns:
            raise ValueError(f"TableSpec {self.name} declares no columns")
        if not self.key_columns:
            raise ValueError(f"TableSpec {self.name} declares no key columns")
        for column in self.columns:
            _validate_identifier(column, "column name")
        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"TableSpec {self.name} declares duplicate columns")
        missing = [c for c in self.key_columns if c not in self.columns]
        if missing:
            raise ValueError(f"Key columns {missing} not in columns of {self.name}")
        if self.dedup_by is not None and self.dedup_by not in self.columns:
            raise ValueError(f"dedup_by column '{self.dedup_by}' not in columns of {self.name}")

    @property
    def update_columns(self) -> tuple[str, ...]:
        """Non-key columns overwritten on conflict."""
        return tuple(c for c in self.columns if c not in self.key_columns)

    def key_of(self, record: Mapping[str, Any]) -> tuple[Any, ...]:
        """Return the upsert key of a record."""
        return tuple(record.get(c) for c in self.key_columns)

    def has_key(self, record: Mapping[str, Any]) -> bool:
        """Whether every key component of ``record`` is non-NULL and non-empty."""
        return all(part is not None and part != "" for part in self.key_of(record))

    def row_params(self, record: Mapping[str, Any]) -> tuple[Any, ...]:
        """Return the record's values in column order (missing columns are NULL)."""
        return tuple(record.get(c) for c in self.columns)

    def deduplicate(self, records: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Collapse records sharing an upsert key, preserving first-seen order.

        Records with a NULL or empty-string key component are skipped, since
        they can never satisfy the table's key constraint. Among duplicates
        the record with the greatest ``dedup_by`` value survives; ``None``
        ranks lowest and ties keep the earlier record.
        """
        chosen: dict[tuple[Any, ...], Mapping[str, Any]] = {}
        for record in records:
            if not self.has_key(record):
                continue
            key = self.key_of(record)
            current = chosen.get(key)
            if current is None:
                chosen[key] = record
            elif self.dedup_by is not None and _ranks_higher(
                record.get(self.dedup_by), current.get(self.dedup_by)
            ):
                chosen[key] = record
        return list(chosen.values())


def _ranks_higher(candidate: Any, current: Any) -> bool:
    if candidate is None:
        return False
    if current is None:
        return True
    return bool(candidate > current)
