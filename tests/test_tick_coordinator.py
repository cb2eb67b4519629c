"""End-to-end tests of polling ticks through the connector.

Feature: tablewatch
"""

import pytest
import structlog

from conftest import EventRecorder, FakeRecordStore
from tablewatch.connector import TableWatchConnector
from tablewatch.models.config import PollingConfig
from tablewatch.models.record import EventKind
from tablewatch.storage.key_value_store import MemoryStore, StoreError
from tablewatch.sync.tick_coordinator import PENDING_MODIFICATIONS_KEY, SNAPSHOT_KEY

log = structlog.stdlib.get_logger()


def make_connector(
    record_store: FakeRecordStore, store: MemoryStore | None = None, policy: str = "empty"
) -> TableWatchConnector:
    return TableWatchConnector(
        client=record_store,
        store=store or MemoryStore(),
        polling=PollingConfig(interval_seconds=1, fetch_failure_policy=policy),
        connector_id="test",
    )


class TestTickPipeline:
    """Fetch, diff, reconcile and dispatch across ticks."""

    def test_first_tick_fires_nothing(self, record_store: FakeRecordStore) -> None:
        record_store.tables["T"] = {"A": {"name": "x"}}
        connector = make_connector(record_store)
        added = EventRecorder()
        connector.subscribe("T", EventKind.RECORD_ADDED, added)

        report = connector.on_interval()

        assert added.events == []
        assert report.change_count == 0
        assert report.success

    def test_added_and_removed_records(self, record_store: FakeRecordStore) -> None:
        record_store.tables["T"] = {"A": {"name": "x"}, "B": {"name": "y"}}
        connector = make_connector(record_store)
        added, deleted, modified = EventRecorder(), EventRecorder(), EventRecorder()
        connector.subscribe("T", "RecordAdded", added)
        connector.subscribe("T", "RecordDeleted", deleted)
        connector.subscribe("T", "RecordModified", modified, raw_mode=True)
        connector.on_interval()

        record_store.tables["T"] = {"A": {"name": "x"}, "C": {"name": "z"}}
        report = connector.on_interval()

        assert added.record_ids == ["C"]
        assert added.events[0].fields == {"name": "z"}
        assert deleted.record_ids == ["B"]
        assert deleted.events[0].fields == {"name": "y"}
        assert modified.events == []
        assert report.change_count == 2

    def test_settled_modification_fires_one_tick_after_raw(self, record_store: FakeRecordStore) -> None:
        record_store.tables["T"] = {"A": {"name": "x"}}
        connector = make_connector(record_store)
        settled, raw = EventRecorder(), EventRecorder()
        connector.subscribe("T", EventKind.RECORD_MODIFIED, settled)
        connector.subscribe(
            "T", EventKind.RECORD_MODIFIED, raw, raw_mode=True, subscription_id="raw"
        )
        connector.on_interval()

        record_store.tables["T"]["A"] = {"name": "xy"}
        connector.on_interval()
        assert settled.events == []
        assert raw.record_ids == ["A"]
        assert raw.events[0].raw is True

        connector.on_interval()
        assert settled.record_ids == ["A"]
        assert settled.events[0].fields == {"name": "xy"}
        assert settled.events[0].raw is False

        connector.on_interval()
        assert len(settled.events) == 1
        assert len(raw.events) == 1

    def test_typing_record_settles_only_after_it_stops_changing(
        self, record_store: FakeRecordStore
    ) -> None:
        record_store.tables["T"] = {"A": {"name": ""}}
        connector = make_connector(record_store)
        settled, raw = EventRecorder(), EventRecorder()
        connector.subscribe("T", EventKind.RECORD_MODIFIED, settled)
        connector.subscribe(
            "T", EventKind.RECORD_MODIFIED, raw, raw_mode=True, subscription_id="raw"
        )
        connector.on_interval()

        for text in ["h", "he", "hel", "hell", "hello"]:
            record_store.tables["T"]["A"] = {"name": text}
            connector.on_interval()

        assert settled.events == []
        assert len(raw.events) == 5

        connector.on_interval()
        assert [event.fields["name"] for event in settled.events] == ["hello"]

    def test_table_without_subscription_is_never_fetched(self, record_store: FakeRecordStore) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}, "Unwatched": {"B": {"n": 2}}}
        connector = make_connector(record_store)
        connector.subscribe("T", EventKind.RECORD_ADDED, EventRecorder())

        for _ in range(5):
            connector.on_interval()

        assert "Unwatched" not in record_store.requested
        assert record_store.requested == ["T"] * 5

    def test_no_subscriptions_fetches_nothing(self, record_store: FakeRecordStore) -> None:
        record_store.tables["T"] = {"A": {"n": 1}}
        store = MemoryStore()
        connector = make_connector(record_store, store)

        report = connector.on_interval()

        assert record_store.requested == []
        assert report.tables == []
        assert store.get(SNAPSHOT_KEY) is None

    def test_handler_failure_is_reported_and_other_handlers_run(
        self, record_store: FakeRecordStore
    ) -> None:
        record_store.tables["T"] = {}
        connector = make_connector(record_store)
        received = EventRecorder()

        def broken(event):
            raise RuntimeError("boom")

        connector.subscribe("T", EventKind.RECORD_ADDED, broken, subscription_id="broken")
        connector.subscribe("T", EventKind.RECORD_ADDED, received, subscription_id="ok")
        connector.on_interval()

        record_store.tables["T"] = {"A": {"n": 1}}
        report = connector.on_interval()

        assert received.record_ids == ["A"]
        assert not report.success
        assert len(report.dispatch.handler_errors) == 1


class TestFailureHandling:
    """Fetch and store failures."""

    def test_failed_fetch_degrades_to_empty_table(self, record_store: FakeRecordStore) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}, "U": {"B": {"n": 2}}}
        connector = make_connector(record_store)
        deleted_t, added_u = EventRecorder(), EventRecorder()
        connector.subscribe("T", EventKind.RECORD_DELETED, deleted_t)
        connector.subscribe("U", EventKind.RECORD_ADDED, added_u)
        connector.on_interval()

        record_store.failing.add("T")
        record_store.tables["U"]["C"] = {"n": 3}
        report = connector.on_interval()

        assert deleted_t.record_ids == ["A"]
        assert added_u.record_ids == ["C"]
        assert len(report.fetch_errors) == 1
        assert "T" in report.fetch_errors[0]

    def test_keep_previous_policy_suppresses_spurious_removals(
        self, record_store: FakeRecordStore
    ) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}}
        connector = make_connector(record_store, policy="keep_previous")
        deleted, added = EventRecorder(), EventRecorder()
        connector.subscribe("T", EventKind.RECORD_DELETED, deleted)
        connector.subscribe("T", EventKind.RECORD_ADDED, added)
        connector.on_interval()

        record_store.failing.add("T")
        connector.on_interval()
        assert deleted.events == []

        record_store.failing.clear()
        connector.on_interval()
        assert deleted.events == []
        assert added.events == []

    def test_keep_previous_policy_bootstraps_table_failing_on_first_tick(
        self, record_store: FakeRecordStore
    ) -> None:
        record_store.tables = {"T": {"A": {"n": 1}, "B": {"n": 2}}}
        record_store.failing.add("T")
        connector = make_connector(record_store, policy="keep_previous")
        added = EventRecorder()
        connector.subscribe("T", EventKind.RECORD_ADDED, added)
        connector.on_interval()

        assert "T" not in connector.coordinator.last_snapshot()

        record_store.failing.clear()
        connector.on_interval()
        assert added.events == []

        record_store.tables["T"]["C"] = {"n": 3}
        connector.on_interval()
        assert added.record_ids == ["C"]

    def test_corrupt_buffer_aborts_tick_before_snapshot_is_saved(
        self, record_store: FakeRecordStore
    ) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}}
        store = MemoryStore()
        connector = make_connector(record_store, store)
        added = EventRecorder()
        connector.subscribe("T", EventKind.RECORD_ADDED, added)
        connector.on_interval()

        good_snapshot = store.get(SNAPSHOT_KEY)
        good_buffer = store.get(PENDING_MODIFICATIONS_KEY)
        store.set(PENDING_MODIFICATIONS_KEY, ["corrupt"])
        record_store.tables["T"]["B"] = {"n": 2}
        with pytest.raises(StoreError):
            connector.on_interval()

        assert store.get(SNAPSHOT_KEY) == good_snapshot
        assert added.events == []

        store.set(PENDING_MODIFICATIONS_KEY, good_buffer)
        connector.on_interval()

        assert added.record_ids == ["B"]

    def test_corrupt_snapshot_aborts_tick_without_writing(self, record_store: FakeRecordStore) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}}
        store = MemoryStore()
        store.set(SNAPSHOT_KEY, "garbage")
        connector = make_connector(record_store, store)
        added = EventRecorder()
        connector.subscribe("T", EventKind.RECORD_ADDED, added)

        with pytest.raises(StoreError):
            connector.on_interval()

        assert store.get(SNAPSHOT_KEY) == "garbage"
        assert store.get(PENDING_MODIFICATIONS_KEY) is None
        assert added.events == []

    def test_tick_after_store_recovery_resumes(self, record_store: FakeRecordStore) -> None:
        record_store.tables = {"T": {"A": {"n": 1}}}
        store = MemoryStore()
        connector = make_connector(record_store, store)
        added = EventRecorder()
        connector.subscribe("T", EventKind.RECORD_ADDED, added)
        connector.on_interval()

        good_snapshot = store.get(SNAPSHOT_KEY)
        store.set(SNAPSHOT_KEY, ["corrupt"])
        record_store.tables["T"]["B"] = {"n": 2}
        with pytest.raises(StoreError):
            connector.on_interval()

        store.set(SNAPSHOT_KEY, good_snapshot)
        connector.on_interval()

        assert added.record_ids == ["B"]

    def test_last_snapshot_round_trips_through_store(self, record_store: FakeRecordStore) -> None:
        record_store.tables = {"T": {"A": {"n": 1}, "B": {"n": 2}, "C": {"n": 3}}}
        connector = make_connector(record_store)
        connector.subscribe("T", EventKind.RECORD_ADDED, EventRecorder())

        assert connector.coordinator.last_snapshot() is None
        connector.on_interval()

        snapshot = connector.coordinator.last_snapshot()
        assert list(snapshot["T"]) == ["A", "B", "C"]
        assert snapshot["T"]["B"].fields == {"n": 2}
