"""Persistent state storage for snapshots and the reconciliation buffer."""

from tablewatch.storage.key_value_store import (
    JsonFileStore,
    KeyValueStoreFactory,
    KeyValueStoreInterface,
    MemoryStore,
    StoreError,
)

__all__ = [
    "JsonFileStore",
    "KeyValueStoreFactory",
    "KeyValueStoreInterface",
    "MemoryStore",
    "StoreError",
]
