"""Pydantic models for watched records, snapshots and subscriptions."""

from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class EventKind(str, Enum):
    """Kinds of record change a subscriber can listen for."""

    RECORD_ADDED = "RecordAdded"
    RECORD_MODIFIED = "RecordModified"
    RECORD_DELETED = "RecordDeleted"


class Record(BaseModel):
    """A single row of a watched table."""

    id: str = Field(default=..., min_length=1, description="Record identifier, unique per table")
    fields: dict[str, Any] = Field(default_factory=dict, description="Field name to value")

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "rec0001",
                "fields": {"Name": "Ada", "Status": "Active"},
            }
        }
    }


Table = dict[str, Record]
Snapshot = dict[str, Table]

# Persisted form of a snapshot or reconciliation buffer: {table: {id: fields}}
StoredTables = dict[str, dict[str, dict[str, Any]]]
stored_tables_adapter: TypeAdapter[StoredTables] = TypeAdapter(StoredTables)


def snapshot_to_dict(snapshot: Snapshot) -> StoredTables:
    """Convert a snapshot into its JSON-compatible persisted form."""
    return {
        table: {record_id: dict(record.fields) for record_id, record in records.items()}
        for table, records in snapshot.items()
    }


def snapshot_from_dict(data: StoredTables) -> Snapshot:
    """Rebuild a snapshot from its persisted form."""
    return {
        table: {
            record_id: Record(id=record_id, fields=fields)
            for record_id, fields in records.items()
        }
        for table, records in data.items()
    }


class ChangeEvent(BaseModel):
    """Payload delivered to a subscription handler."""

    record_id: str = Field(default=..., description="Identifier of the changed record")
    fields: dict[str, Any] = Field(default_factory=dict, description="Record fields")
    table: str = Field(default=..., description="Table the record belongs to")
    kind: EventKind = Field(default=..., description="Kind of change")
    raw: bool = Field(
        default=False, description="True for modifications delivered before debouncing"
    )


EventHandler = Callable[[ChangeEvent], Any]


class Subscription(BaseModel):
    """A registered interest in one kind of change on one table."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kind: EventKind = Field(default=..., description="Kind of change to listen for")
    table: str = Field(default=..., min_length=1, description="Watched table name")
    raw_mode: bool = Field(
        default=False,
        description="Receive every raw modification instead of settled ones",
    )
    handler: EventHandler = Field(default=..., description="Callable invoked per change")
    subscription_id: str = Field(default=..., min_length=1, description="Registry key")

    def matches(self, kind: EventKind, table: str, raw: bool = False) -> bool:
        """
        Check whether this subscription should receive a change.

        Raw mode only discriminates modifications; additions and removals
        are delivered regardless of it.

        Args:
            kind: Kind of the change being dispatched
            table: Table of the change being dispatched
            raw: Whether the change is a raw (undebounced) modification

        Returns:
            True if the subscription matches
        """
        if self.kind is not kind or self.table != table:
            return False
        if kind is EventKind.RECORD_MODIFIED:
            return self.raw_mode == raw
        return True
