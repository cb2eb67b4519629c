"""Polling change detection with debounced notifications for Airtable tables."""

__version__ = "0.1.0"

from tablewatch.connector import TableWatchConnector
from tablewatch.models.record import ChangeEvent, EventKind, Record

__all__ = ["ChangeEvent", "EventKind", "Record", "TableWatchConnector", "__version__"]
