"""Coordination of one fetch, diff, reconcile and dispatch run."""

import threading
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from pydantic import ValidationError

from tablewatch.ingestion.snapshot_fetcher import SnapshotFetcher
from tablewatch.models.record import (
    Snapshot,
    StoredTables,
    snapshot_from_dict,
    snapshot_to_dict,
    stored_tables_adapter,
)
from tablewatch.storage.key_value_store import KeyValueStoreInterface, StoreError
from tablewatch.sync.diff_engine import DiffEngine
from tablewatch.sync.dispatcher import EventDispatcher
from tablewatch.sync.models import TickReport
from tablewatch.sync.reconciliation import ReconciliationBuffer

log = structlog.stdlib.get_logger()

SNAPSHOT_KEY = "AIRTABLE_STORAGE_KEY"
PENDING_MODIFICATIONS_KEY = "AIRTABLE_STORAGE_KEY_HANDLE_MULTI_UPDATES"


class TickCoordinator:
    """Runs the change-detection pipeline once per call, never concurrently."""

    def __init__(
        self,
        fetcher: SnapshotFetcher,
        dispatcher: EventDispatcher,
        store: KeyValueStoreInterface,
        diff_engine: DiffEngine | None = None,
        fetch_failure_policy: Literal["empty", "keep_previous"] = "empty",
        key_prefix: str = "",
    ):
        """
        Initialize the tick coordinator.

        Args:
            fetcher: Reads the current state of the watched tables
            dispatcher: Subscription registry that receives the changes
            store: Key-value store persisting the snapshot and pending modifications
            diff_engine: Optional diff engine (a default one is created if None)
            fetch_failure_policy: "empty" to diff a failed table as empty,
                "keep_previous" to reuse its previously captured records
            key_prefix: Prefix for the persisted keys, to share one store
                between several connectors
        """
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._store = store
        self._diff_engine = diff_engine or DiffEngine()
        self._fetch_failure_policy = fetch_failure_policy
        self._snapshot_key = f"{key_prefix}{SNAPSHOT_KEY}"
        self._buffer = ReconciliationBuffer(store, f"{key_prefix}{PENDING_MODIFICATIONS_KEY}")
        self._lock = threading.Lock()

    @property
    def snapshot_key(self) -> str:
        return self._snapshot_key

    @property
    def buffer(self) -> ReconciliationBuffer:
        return self._buffer

    def last_snapshot(self) -> Snapshot | None:
        """Load the last persisted snapshot, or None before the first tick."""
        stored = self._decode_snapshot(self._store.get(self._snapshot_key))
        return snapshot_from_dict(stored) if stored is not None else None

    def run_tick(self) -> TickReport:
        """
        Execute one full pipeline run.

        Only one run executes at a time; a concurrent caller blocks until the
        running tick completes.

        Returns:
            TickReport describing what was detected and delivered

        Raises:
            StoreError: If persisted state is unreadable or corrupt. Nothing is
                dispatched and the next tick retries from the last persisted state.
        """
        with self._lock:
            return self._run_tick()

    def _run_tick(self) -> TickReport:
        start_time = datetime.now(timezone.utc)
        tables = self._dispatcher.watched_tables()

        if not tables:
            log.info("tick_skipped_no_subscriptions")
            end_time = datetime.now(timezone.utc)
            return TickReport(
                start_time=start_time,
                end_time=end_time,
                duration_seconds=(end_time - start_time).total_seconds(),
            )

        log.info("tick_started", tables=tables)

        # a corrupt buffer must abort the tick before the snapshot is swapped
        self._buffer.pending()

        fetch_result = self._fetcher.fetch_all(tables)
        failed_tables = fetch_result.failed_tables

        def swap(current: Any) -> StoredTables:
            previous = self._decode_snapshot(current)
            new_stored = snapshot_to_dict(fetch_result.snapshot)
            if self._fetch_failure_policy == "keep_previous":
                for table in failed_tables:
                    if previous is not None and table in previous:
                        new_stored[table] = previous[table]
                    else:
                        # never captured: bootstrap on the next successful fetch
                        new_stored.pop(table, None)
            return new_stored

        old_stored, new_stored = self._store.update(self._snapshot_key, swap)
        old_snapshot = snapshot_from_dict(old_stored) if old_stored is not None else None
        new_snapshot = snapshot_from_dict(new_stored)

        diff = self._diff_engine.diff(old_snapshot, new_snapshot)
        settled = self._buffer.advance(diff.modifications(), tables)
        stats = self._dispatcher.dispatch(tables, diff, settled)

        end_time = datetime.now(timezone.utc)
        report = TickReport(
            tables=tables,
            change_count=diff.change_count,
            settled_count=sum(len(records) for records in settled.values()),
            dispatch=stats,
            fetch_errors=[str(error) for error in fetch_result.errors],
            start_time=start_time,
            end_time=end_time,
            duration_seconds=(end_time - start_time).total_seconds(),
        )

        log.info(
            "tick_completed",
            change_count=report.change_count,
            settled_count=report.settled_count,
            events=stats.total_events,
            fetch_errors=len(report.fetch_errors),
            handler_errors=len(stats.handler_errors),
            duration_seconds=report.duration_seconds,
        )
        return report

    def _decode_snapshot(self, value: Any) -> StoredTables | None:
        if value is None:
            return None
        try:
            return stored_tables_adapter.validate_python(value)
        except ValidationError as e:
            log.error("persisted_snapshot_corrupt", key=self._snapshot_key, error=str(e))
            raise StoreError(f"Persisted snapshot '{self._snapshot_key}' is corrupt: {e}") from e
