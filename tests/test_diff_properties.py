"""Property-based tests for snapshot diffing.

Feature: tablewatch
"""

from typing import Any

import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from tablewatch.models.record import Record, Snapshot
from tablewatch.sync.diff_engine import DiffEngine, fields_equal

log = structlog.stdlib.get_logger()

field_values = st.recursive(
    st.none() | st.booleans() | st.integers(-5, 5) | st.text(max_size=5),
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=3), children, max_size=3),
    max_leaves=6,
)
field_maps = st.dictionaries(st.sampled_from(["Name", "Status", "Notes"]), field_values, max_size=3)


@st.composite
def snapshot_strategy(draw: st.DrawFn) -> Snapshot:
    """Generate a snapshot over a small, overlapping id space."""
    tables = draw(st.lists(st.sampled_from(["Tasks", "People", "Projects"]), unique=True, max_size=3))
    snapshot: Snapshot = {}
    for table in tables:
        rows = draw(st.dictionaries(st.sampled_from([f"rec{i}" for i in range(6)]), field_maps, max_size=6))
        snapshot[table] = {record_id: Record(id=record_id, fields=f) for record_id, f in rows.items()}
    return snapshot


def make_table(rows: dict[str, dict[str, Any]]) -> dict[str, Record]:
    return {record_id: Record(id=record_id, fields=fields) for record_id, fields in rows.items()}


class TestChangePartition:
    """Property 1: Additions, modifications, removals and unchanged partition all ids.

    **Feature: tablewatch, Property 1: Change partition**
    """

    @given(old=snapshot_strategy(), new=snapshot_strategy())
    @settings(max_examples=200)
    def test_changes_partition_union_of_ids(self, old: Snapshot, new: Snapshot) -> None:
        result = DiffEngine().diff(old, new)

        for table, new_records in new.items():
            table_diff = result.for_table(table)
            if table not in old:
                assert not table_diff.has_changes, "Bootstrapped tables must not report changes"
                continue

            old_records = old[table]
            groups = [
                set(table_diff.additions),
                set(table_diff.modifications),
                set(table_diff.removals),
                set(table_diff.unchanged),
            ]

            assert set().union(*groups) == set(old_records) | set(new_records)
            assert sum(len(g) for g in groups) == len(set(old_records) | set(new_records)), (
                "An id must belong to exactly one group"
            )

            for record_id in table_diff.additions:
                assert record_id not in old_records and record_id in new_records
            for record_id in table_diff.removals:
                assert record_id in old_records and record_id not in new_records
            for record_id, record in table_diff.modifications.items():
                assert record == new_records[record_id]
                assert not fields_equal(old_records[record_id].fields, record.fields)

    @given(snapshot=snapshot_strategy())
    @settings(max_examples=100)
    def test_diff_against_itself_is_empty(self, snapshot: Snapshot) -> None:
        """Diffing a snapshot against itself yields no changes."""
        result = DiffEngine().diff(snapshot, snapshot)

        assert result.change_count == 0
        for table in snapshot:
            assert not result.for_table(table).has_changes


class TestDiffScenarios:
    """Concrete diff scenarios."""

    def test_removed_and_added_records(self) -> None:
        old = {"T": make_table({"A": {"name": "x"}, "B": {"name": "y"}})}
        new = {"T": make_table({"A": {"name": "x"}, "C": {"name": "z"}})}

        table_diff = DiffEngine().diff(old, new).for_table("T")

        assert list(table_diff.removals) == ["B"]
        assert list(table_diff.additions) == ["C"]
        assert table_diff.modifications == {}
        assert table_diff.unchanged == {"A"}
        assert table_diff.removals["B"].fields == {"name": "y"}

    def test_modified_record_carries_new_fields(self) -> None:
        old = {"T": make_table({"A": {"name": "x"}})}
        new = {"T": make_table({"A": {"name": "xy"}})}

        result = DiffEngine().diff(old, new)

        assert result.for_table("T").modifications["A"].fields == {"name": "xy"}
        assert result.change_count == 1

    def test_first_observation_yields_no_changes(self) -> None:
        new = {"T": make_table({"A": {"name": "x"}})}

        result = DiffEngine().diff(None, new)

        assert "T" in result.tables
        assert result.change_count == 0

    def test_table_new_to_snapshot_is_bootstrapped(self) -> None:
        old = {"T": make_table({"A": {"name": "x"}})}
        new = {"T": make_table({"A": {"name": "x"}}), "U": make_table({"B": {"n": 1}})}

        result = DiffEngine().diff(old, new)

        assert not result.for_table("U").has_changes

    def test_unknown_table_returns_empty_diff(self) -> None:
        result = DiffEngine().diff(None, {})

        assert not result.for_table("missing").has_changes


class TestFieldsEqual:
    """Deep structural equality of field maps."""

    @given(value=field_maps)
    def test_reflexive(self, value: dict) -> None:
        assert fields_equal(value, value)

    def test_key_order_is_irrelevant(self) -> None:
        assert fields_equal({"a": 1, "b": [1, {"c": 2}]}, {"b": [1, {"c": 2}], "a": 1})

    def test_sequence_order_matters(self) -> None:
        assert not fields_equal({"tags": ["a", "b"]}, {"tags": ["b", "a"]})

    def test_booleans_differ_from_numbers(self) -> None:
        assert not fields_equal({"done": True}, {"done": 1})
        assert not fields_equal({"done": False}, {"done": 0})

    def test_missing_key_differs_from_none(self) -> None:
        assert not fields_equal({"a": None}, {})

    def test_nested_difference_detected(self) -> None:
        assert not fields_equal({"a": {"b": {"c": 1}}}, {"a": {"b": {"c": 2}}})

    def test_container_differs_from_scalar(self) -> None:
        assert not fields_equal({"a": [1]}, {"a": 1})
        assert not fields_equal({"a": {}}, {"a": ""})
