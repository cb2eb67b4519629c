"""Connector emulating push events over Airtable tables by polling."""

from typing import Any

import structlog

from tablewatch.ingestion.airtable_client import AirtableClient, RecordStoreClient
from tablewatch.ingestion.snapshot_fetcher import SnapshotFetcher
from tablewatch.models.config import AppConfig, PollingConfig
from tablewatch.models.record import EventHandler, EventKind
from tablewatch.storage.key_value_store import (
    KeyValueStoreFactory,
    KeyValueStoreInterface,
    MemoryStore,
)
from tablewatch.sync.dispatcher import EventDispatcher
from tablewatch.sync.models import TickReport
from tablewatch.sync.scheduler import PollingScheduler
from tablewatch.sync.tick_coordinator import TickCoordinator

log = structlog.stdlib.get_logger()


def parse_event_kind(kind: EventKind | str) -> EventKind:
    """
    Resolve an event kind from its enum member or wire name.

    Raises:
        ValueError: If the kind is not one of RecordAdded, RecordModified, RecordDeleted
    """
    if isinstance(kind, EventKind):
        return kind
    try:
        return EventKind(kind)
    except ValueError:
        raise ValueError(f"Invalid event type: {kind}") from None


class TableWatchConnector:
    """Subscribes handlers to table changes and drives the polling loop."""

    def __init__(
        self,
        client: RecordStoreClient,
        store: KeyValueStoreInterface | None = None,
        polling: PollingConfig | None = None,
        connector_id: str = "default",
        key_prefix: str = "",
    ):
        """
        Initialize the connector.

        Args:
            client: Record store client used to read tables
            store: Key-value store for state between ticks (in-memory if None)
            polling: Polling configuration (defaults if None)
            connector_id: Identifier used in default subscription ids
            key_prefix: Prefix of the persisted keys
        """
        self._client = client
        self._store = store or MemoryStore()
        self._polling = polling or PollingConfig()
        self._connector_id = connector_id
        self._dispatcher = EventDispatcher(connector_id=connector_id)
        self._coordinator = TickCoordinator(
            fetcher=SnapshotFetcher(client),
            dispatcher=self._dispatcher,
            store=self._store,
            fetch_failure_policy=self._polling.fetch_failure_policy,
            key_prefix=key_prefix,
        )
        self._scheduler = PollingScheduler(
            self._coordinator.run_tick, self._polling.interval_seconds
        )
        log.info(
            "connector_initialized",
            connector_id=connector_id,
            interval_seconds=self._polling.interval_seconds,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> "TableWatchConnector":
        """Build a connector with an Airtable client and store from configuration."""
        client = AirtableClient(
            api_key=config.airtable.api_key,
            base_id=config.airtable.base_id,
            endpoint_url=str(config.airtable.endpoint_url),
            page_size=config.airtable.page_size,
            timeout_seconds=config.airtable.timeout_seconds,
        )
        return cls(
            client=client,
            store=KeyValueStoreFactory.create(config.store),
            polling=config.polling,
            connector_id=config.connector_id,
            key_prefix=f"{config.store.namespace}/{config.connector_id}/",
        )

    @property
    def id(self) -> str:
        return self._connector_id

    @property
    def client(self) -> RecordStoreClient:
        """The underlying record store client."""
        return self._client

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def coordinator(self) -> TickCoordinator:
        return self._coordinator

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    def subscribe(
        self,
        table: str,
        kind: EventKind | str,
        handler: EventHandler,
        raw_mode: bool = False,
        subscription_id: str | None = None,
    ) -> str:
        """
        Subscribe a handler to changes of a table.

        Args:
            table: Table to watch
            kind: RecordAdded, RecordModified or RecordDeleted
            handler: Synchronous callable receiving a ChangeEvent
            raw_mode: For modifications, receive every raw change instead of
                waiting until the record stops changing
            subscription_id: Optional identifier; defaults to
                AIRTABLE/{kind}/{table}/{connector id}

        Returns:
            The subscription identifier

        Raises:
            ValueError: If the event kind is invalid
            TypeError: If the handler is a coroutine function
        """
        return self._dispatcher.register(
            kind=parse_event_kind(kind),
            table=table,
            handler=handler,
            raw_mode=raw_mode,
            subscription_id=subscription_id,
        )

    def on(
        self,
        options: dict[str, Any],
        handler: EventHandler,
        event_id: str | None = None,
    ) -> str:
        """
        Subscribe using an options mapping: ``type``, ``table`` and the
        optional ``fireWhileTyping`` flag (raw mode, default False).
        """
        fire_while_typing = options.get("fireWhileTyping")
        if not isinstance(fire_while_typing, bool):
            fire_while_typing = False

        return self.subscribe(
            table=options["table"],
            kind=options.get("type", ""),
            handler=handler,
            raw_mode=fire_while_typing,
            subscription_id=event_id,
        )

    def on_interval(self) -> TickReport:
        """Run one polling tick immediately."""
        return self._coordinator.run_tick()

    def start(self) -> None:
        self._scheduler.start()

    def stop(self, timeout: float | None = None) -> None:
        self._scheduler.stop(timeout=timeout)
