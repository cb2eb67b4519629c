"""Debouncing of repeated modifications into settled modifications.

The source system persists every intermediate edit (each keystroke of a text
field, for instance) as a separate modification. A modification is only
considered settled once the record's fields stay the same for one full
polling interval. Pending modifications are carried from one tick to the
next in the key-value store.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from tablewatch.models.record import (
    Record,
    StoredTables,
    Table,
    stored_tables_adapter,
)
from tablewatch.storage.key_value_store import KeyValueStoreInterface, StoreError
from tablewatch.sync.diff_engine import fields_equal

log = structlog.stdlib.get_logger()

FieldMaps = dict[str, dict[str, Any]]


def reconcile(
    modifications: Mapping[str, Mapping[str, Any]],
    pending: Mapping[str, Mapping[str, Any]],
) -> tuple[FieldMaps, FieldMaps]:
    """
    Advance the pending modifications of one table by one tick.

    Args:
        modifications: Raw modifications detected this tick (id to fields)
        pending: Modifications carried over from the previous tick (id to fields)

    Returns:
        Tuple of (settled, next_pending), both mapping id to fields
    """
    settled: FieldMaps = {}
    next_pending: FieldMaps = {}

    # changed last tick and not again since
    for record_id, fields in pending.items():
        if record_id not in modifications:
            settled[record_id] = dict(fields)

    for record_id, fields in modifications.items():
        if record_id not in pending:
            next_pending[record_id] = dict(fields)
        elif fields_equal(pending[record_id], fields):
            settled[record_id] = dict(fields)
        else:
            next_pending[record_id] = dict(fields)

    return settled, next_pending


class ReconciliationBuffer:
    """Store-backed reconciliation buffer shared by all watched tables."""

    def __init__(self, store: KeyValueStoreInterface, key: str):
        """
        Initialize the buffer.

        Args:
            store: Key-value store persisting the buffer between ticks
            key: Storage key of the buffer
        """
        self._store = store
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def pending(self) -> StoredTables | None:
        """Load the persisted buffer, or None if it was never written."""
        return self._decode(self._store.get(self._key))

    def advance(
        self,
        modifications: Mapping[str, Table],
        tables: Iterable[str],
    ) -> dict[str, Table]:
        """
        Reconcile this tick's raw modifications against the persisted buffer.

        The buffer is read, advanced and written back in a single atomic
        store update. On the very first call nothing settles and the raw
        modifications become the pending set.

        Args:
            modifications: Raw modifications by table
            tables: Watched tables, in dispatch order

        Returns:
            Settled modifications by table (every watched table has an entry)

        Raises:
            StoreError: If the persisted buffer is unreadable or corrupt
        """
        tables = list(tables)
        settled_by_table: dict[str, Table] = {table: {} for table in tables}

        def apply(current: Any) -> StoredTables:
            previous = self._decode(current)
            next_buffer: StoredTables = {}

            for table in tables:
                raw = {
                    record_id: record.fields
                    for record_id, record in modifications.get(table, {}).items()
                }

                if previous is None:
                    next_buffer[table] = {record_id: dict(f) for record_id, f in raw.items()}
                    continue

                settled, next_pending = reconcile(raw, previous.get(table, {}))
                next_buffer[table] = next_pending
                settled_by_table[table] = {
                    record_id: Record(id=record_id, fields=fields)
                    for record_id, fields in settled.items()
                }

            if previous is None:
                log.info("reconciliation_buffer_bootstrapped", tables=tables)
            return next_buffer

        _, next_buffer = self._store.update(self._key, apply)

        log.info(
            "modifications_reconciled",
            settled=sum(len(records) for records in settled_by_table.values()),
            pending=sum(len(records) for records in next_buffer.values()),
        )
        return settled_by_table

    def _decode(self, value: Any) -> StoredTables | None:
        if value is None:
            return None
        try:
            return stored_tables_adapter.validate_python(value)
        except ValidationError as e:
            log.error("reconciliation_buffer_corrupt", key=self._key, error=str(e))
            raise StoreError(f"Reconciliation buffer '{self._key}' is corrupt: {e}") from e
