"""Data models for the table watcher."""

from tablewatch.models.config import (
    AirtableConfig,
    AppConfig,
    LoggingConfig,
    PollingConfig,
    StoreConfig,
    SubscriptionConfig,
)
from tablewatch.models.record import (
    ChangeEvent,
    EventHandler,
    EventKind,
    Record,
    Snapshot,
    Subscription,
    Table,
    snapshot_from_dict,
    snapshot_to_dict,
)

__all__ = [
    "AirtableConfig",
    "AppConfig",
    "ChangeEvent",
    "EventHandler",
    "EventKind",
    "LoggingConfig",
    "PollingConfig",
    "Record",
    "Snapshot",
    "StoreConfig",
    "Subscription",
    "SubscriptionConfig",
    "Table",
    "snapshot_from_dict",
    "snapshot_to_dict",
]
