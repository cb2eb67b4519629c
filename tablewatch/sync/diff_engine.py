"""Change detection between two snapshots of the watched tables."""

from collections.abc import Mapping
from typing import Any

import structlog

from tablewatch.models.record import Snapshot, Table
from tablewatch.sync.models import DiffResult, TableDiff

log = structlog.stdlib.get_logger()


def fields_equal(a: Any, b: Any) -> bool:
    """
    Deep structural equality over field values.

    Mappings compare by key set and values regardless of order, sequences
    element by element. Booleans never equal numbers, so ``True`` and ``1``
    are different values, as they are once serialized.

    Args:
        a: First value
        b: Second value

    Returns:
        True if both values are structurally equal
    """
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(fields_equal(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        if len(a) != len(b):
            return False
        return all(fields_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, (Mapping, list, tuple)) or isinstance(b, (Mapping, list, tuple)):
        return False

    return a == b


class DiffEngine:
    """Classifies records into additions, modifications and removals."""

    def diff(self, old: Snapshot | None, new: Snapshot) -> DiffResult:
        """
        Compare two snapshots table by table.

        Tables of ``new`` that have no previous capture are bootstrapped: they
        yield no changes, so nothing fires on the first observation.

        Args:
            old: Previously captured snapshot, or None on the very first tick
            new: Snapshot captured this tick

        Returns:
            DiffResult with one TableDiff per table of ``new``
        """
        result = DiffResult()

        for table, new_records in new.items():
            if old is None or table not in old:
                log.debug("table_bootstrapped", table=table, record_count=len(new_records))
                result.tables[table] = TableDiff()
                continue

            result.tables[table] = self.diff_table(old[table], new_records)

        log.info(
            "changes_detected",
            tables=len(result.tables),
            total_changes=result.change_count,
        )
        return result

    def diff_table(self, old_records: Table, new_records: Table) -> TableDiff:
        """
        Compare two captures of the same table.

        Args:
            old_records: Records of the previous capture
            new_records: Records of the current capture

        Returns:
            TableDiff partitioning the union of both id sets
        """
        table_diff = TableDiff()

        for record_id, record in new_records.items():
            previous = old_records.get(record_id)
            if previous is None:
                table_diff.additions[record_id] = record
            elif fields_equal(previous.fields, record.fields):
                table_diff.unchanged.add(record_id)
            else:
                table_diff.modifications[record_id] = record

        for record_id, record in old_records.items():
            if record_id not in new_records:
                table_diff.removals[record_id] = record

        return table_diff
