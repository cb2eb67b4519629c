"""Change detection, debouncing and dispatch of table events."""

from tablewatch.sync.diff_engine import DiffEngine, fields_equal
from tablewatch.sync.dispatcher import EventDispatcher, HandlerError
from tablewatch.sync.models import DiffResult, DispatchStats, TableDiff, TickReport
from tablewatch.sync.reconciliation import ReconciliationBuffer, reconcile
from tablewatch.sync.scheduler import PollingScheduler
from tablewatch.sync.tick_coordinator import TickCoordinator

__all__ = [
    "DiffEngine",
    "DiffResult",
    "DispatchStats",
    "EventDispatcher",
    "HandlerError",
    "PollingScheduler",
    "ReconciliationBuffer",
    "TableDiff",
    "TickCoordinator",
    "TickReport",
    "fields_equal",
    "reconcile",
]
