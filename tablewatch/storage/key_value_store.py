"""Key-value store interface and implementations for persisting state between ticks."""

import copy
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable

import structlog

from tablewatch.models.config import StoreConfig

log = structlog.stdlib.get_logger()


class StoreError(RuntimeError):
    """Raised when persisted state cannot be read, decoded or written."""


class KeyValueStoreInterface(ABC):
    """Abstract interface for the persistent key-value store.

    Values are JSON-compatible Python objects. ``None`` means the key is absent.
    """

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Get the value stored under a key.

        Args:
            key: Storage key

        Returns:
            The stored value, or None if the key is absent

        Raises:
            StoreError: If the underlying storage cannot be read
        """
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value under a key, replacing any previous value.

        Args:
            key: Storage key
            value: JSON-compatible value

        Raises:
            StoreError: If the value cannot be written
        """
        pass

    @abstractmethod
    def update(self, key: str, fn: Callable[[Any | None], Any]) -> tuple[Any | None, Any]:
        """Atomically apply ``fn`` to the current value and persist the result.

        If ``fn`` raises, nothing is written and the exception propagates.

        Args:
            key: Storage key
            fn: Function receiving the current value (None if absent)

        Returns:
            Tuple of (old value, new value)

        Raises:
            StoreError: If the underlying storage cannot be read or written
        """
        pass


class MemoryStore(KeyValueStoreInterface):
    """In-process store. State lives for the lifetime of the object."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def update(self, key: str, fn: Callable[[Any | None], Any]) -> tuple[Any | None, Any]:
        with self._lock:
            old_value = copy.deepcopy(self._data.get(key))
            new_value = fn(copy.deepcopy(old_value))
            self._data[key] = copy.deepcopy(new_value)
            return old_value, new_value


class JsonFileStore(KeyValueStoreInterface):
    """Store backed by a single JSON document on disk.

    Writes go to a temporary file in the same directory which then replaces
    the state file, so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | Path):
        """Initialize the JSON file store.

        Args:
            path: Path to the state file. Parent directories are created if needed.
        """
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        log.info("json_file_store_initialized", path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def update(self, key: str, fn: Callable[[Any | None], Any]) -> tuple[Any | None, Any]:
        with self._lock:
            data = self._read()
            old_value = data.get(key)
            new_value = fn(copy.deepcopy(old_value))
            data[key] = new_value
            self._write(data)
            return old_value, new_value

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}

        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            log.error("state_file_read_failed", path=str(self._path), error=str(e))
            raise StoreError(f"Failed to read state file {self._path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"State file {self._path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path is not None:
                Path(tmp_path).unlink(missing_ok=True)
            log.error("state_file_write_failed", path=str(self._path), error=str(e))
            raise StoreError(f"Failed to write state file {self._path}: {e}") from e


class KeyValueStoreFactory:
    """Factory for creating key-value store instances."""

    @staticmethod
    def create(config: StoreConfig) -> KeyValueStoreInterface:
        """Create a store from configuration.

        Args:
            config: Store configuration

        Returns:
            Store implementation matching ``config.type``

        Raises:
            ValueError: If the json backend is selected without a path
        """
        if config.type == "json":
            if not config.path:
                raise ValueError("store.path is required for the json store")
            return JsonFileStore(config.path)

        return MemoryStore()
