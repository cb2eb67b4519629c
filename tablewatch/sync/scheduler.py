"""Fixed-interval scheduler that never overlaps pipeline runs."""

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

log = structlog.stdlib.get_logger()


class PollingScheduler:
    """Runs a tick function on a background thread at a fixed interval.

    Ticks run one after another on the same thread, so a tick always
    finishes before the next one starts. A tick that overruns the interval
    delays the next one instead of overlapping it.
    """

    def __init__(self, run_tick: Callable[[], Any], interval_seconds: float):
        """
        Initialize the scheduler.

        Args:
            run_tick: Function executing one pipeline run
            interval_seconds: Delay between the starts of consecutive ticks

        Raises:
            ValueError: If the interval is not positive
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")

        self._run_tick = run_tick
        self._interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_tick: datetime | None = None
        self._tick_count = 0
        self._failure_count = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling on a daemon thread."""
        if self.is_running:
            log.warning("scheduler_already_running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._polling_loop, name="tablewatch-scheduler", daemon=True
        )
        self._thread.start()
        log.info("scheduler_started", interval_seconds=self._interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling and wait for the running tick to finish.

        Args:
            timeout: Maximum seconds to wait for the thread (None waits forever)
        """
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        log.info("scheduler_stopped", tick_count=self._tick_count)

    def run_once(self) -> bool:
        """
        Run a single tick, logging instead of raising on failure.

        Returns:
            True if the tick completed, False if it raised
        """
        self._last_tick = datetime.now(timezone.utc)
        self._tick_count += 1
        try:
            with structlog.contextvars.bound_contextvars(tick=self._tick_count):
                self._run_tick()
            return True
        except Exception as e:
            self._failure_count += 1
            log.error(
                "tick_failed",
                tick=self._tick_count,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

    def get_status(self) -> dict:
        """Get scheduler status."""
        return {
            "is_running": self.is_running,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "interval_seconds": self._interval_seconds,
            "tick_count": self._tick_count,
            "failure_count": self._failure_count,
        }

    def _polling_loop(self) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            self.run_once()
            elapsed = time.monotonic() - started
            self._stop_event.wait(max(0.0, self._interval_seconds - elapsed))
