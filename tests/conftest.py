"""Shared fixtures and fakes for the table watcher tests."""

from typing import Any, Iterator

import pytest

from tablewatch.models.record import ChangeEvent, Record


class FakeRecordStore:
    """In-memory record store client.

    Tables are plain ``{id: fields}`` mappings that tests mutate between ticks.
    Records are served in pages of ``page_size``.
    """

    def __init__(
        self,
        tables: dict[str, dict[str, dict[str, Any]]] | None = None,
        page_size: int = 2,
    ):
        self.tables: dict[str, dict[str, dict[str, Any]]] = tables or {}
        self.page_size = page_size
        self.failing: set[str] = set()
        self.requested: list[str] = []

    def list_pages(self, table_name: str) -> Iterator[list[Record]]:
        self.requested.append(table_name)
        if table_name in self.failing:
            raise ConnectionError(f"table {table_name} unavailable")

        records = [
            Record(id=record_id, fields=dict(fields))
            for record_id, fields in self.tables.get(table_name, {}).items()
        ]
        for start in range(0, len(records), self.page_size):
            yield records[start : start + self.page_size]


class EventRecorder:
    """Handler that remembers every event it receives."""

    def __init__(self, name: str = "recorder", log: list | None = None):
        self.name = name
        self.events: list[ChangeEvent] = []
        self.log = log

    def __call__(self, event: ChangeEvent) -> None:
        self.events.append(event)
        if self.log is not None:
            self.log.append((self.name, event.kind.value, event.table, event.record_id, event.raw))

    @property
    def record_ids(self) -> list[str]:
        return [event.record_id for event in self.events]


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()
