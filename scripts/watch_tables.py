#!/usr/bin/env python3
"""
Polling watcher for Airtable tables.

This script polls the tables named in the configured subscriptions and logs
every added, modified and deleted record:
- Additions and deletions are reported on the tick they are detected
- Modifications are reported once the record stops changing for one interval
  (or on every change for subscriptions with raw_mode enabled)

Usage:
    python scripts/watch_tables.py [--config CONFIG_PATH] [--once]
"""

import argparse
import signal
import sys
import threading

import structlog

from tablewatch.connector import TableWatchConnector
from tablewatch.models.config import AppConfig
from tablewatch.models.record import ChangeEvent
from tablewatch.storage.key_value_store import StoreError
from tablewatch.utils.config_loader import ConfigLoader, ConfigurationError
from tablewatch.utils.logging_config import configure_logging_from_config

log = structlog.stdlib.get_logger()


def log_event(event: ChangeEvent) -> None:
    """Handler that logs every delivered change."""
    log.info(
        "record_event",
        kind=event.kind.value,
        table=event.table,
        record_id=event.record_id,
        raw=event.raw,
        fields=event.fields,
    )


def build_connector(config: AppConfig) -> TableWatchConnector:
    """Create the connector and register the configured subscriptions."""
    connector = TableWatchConnector.from_config(config)

    for subscription in config.subscriptions:
        connector.subscribe(
            table=subscription.table,
            kind=subscription.event,
            handler=log_event,
            raw_mode=subscription.raw_mode,
        )

    return connector


def main():
    """Main entry point for the watcher script."""
    parser = argparse.ArgumentParser(description="Poll Airtable tables and log record changes")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single tick and exit",
    )

    args = parser.parse_args()

    config_loader = ConfigLoader()
    try:
        config = config_loader.load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging_from_config(config.logging)
    config_loader.validate_config(config)

    connector = build_connector(config)

    if args.once:
        try:
            report = connector.on_interval()
        except StoreError as e:
            log.error("tick_aborted", error=str(e))
            sys.exit(1)
        log.info("tick_report", **report.model_dump(mode="json"))
        sys.exit(0 if report.success else 1)

    stopped = threading.Event()

    def handle_signal(signum, frame):
        log.info("shutdown_requested", signal=signum)
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    connector.start()
    log.info("watcher_running", tables=connector.dispatcher.watched_tables())

    stopped.wait()
    connector.stop(timeout=config.polling.interval_seconds * 2)
    log.info("watcher_stopped", **connector.scheduler.get_status())


if __name__ == "__main__":
    main()
