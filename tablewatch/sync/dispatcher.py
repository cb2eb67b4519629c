"""Subscription registry and deterministic delivery of change events."""

import inspect
from collections.abc import Callable, Iterable, Mapping

import structlog

from tablewatch.models.record import (
    ChangeEvent,
    EventHandler,
    EventKind,
    Record,
    Subscription,
    Table,
)
from tablewatch.sync.models import DiffResult, DispatchStats

log = structlog.stdlib.get_logger()

SubscriptionPredicate = Callable[[Subscription], bool]


class HandlerError(RuntimeError):
    """Raised when a subscription handler fails for one event."""

    def __init__(self, subscription_id: str, event: ChangeEvent, cause: Exception):
        super().__init__(
            f"Handler '{subscription_id}' failed for {event.kind.value} "
            f"{event.table}/{event.record_id}: {cause}"
        )
        self.subscription_id = subscription_id
        self.event = event
        self.cause = cause


def default_subscription_id(kind: EventKind, table: str, connector_id: str) -> str:
    """Build the identifier used when a subscriber does not supply one."""
    return f"AIRTABLE/{kind.value}/{table}/{connector_id}"


def subscription_filter(
    kind: EventKind, table: str, raw: bool = False
) -> SubscriptionPredicate:
    """Build a predicate selecting the subscriptions that receive a change."""

    def predicate(subscription: Subscription) -> bool:
        return subscription.matches(kind, table, raw)

    return predicate


class EventDispatcher:
    """Holds subscriptions and invokes their handlers for classified changes."""

    def __init__(self, connector_id: str = "default"):
        self._connector_id = connector_id
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())

    def register(
        self,
        kind: EventKind,
        table: str,
        handler: EventHandler,
        raw_mode: bool = False,
        subscription_id: str | None = None,
    ) -> str:
        """
        Register a subscription.

        Handlers run synchronously on the polling thread. A subscription
        registered under an identifier that is already in use replaces the
        earlier one.

        Args:
            kind: Kind of change to listen for
            table: Table to watch
            handler: Callable receiving a ChangeEvent
            raw_mode: Receive raw modifications instead of settled ones
            subscription_id: Optional identifier (a default one is derived if None)

        Returns:
            The subscription identifier

        Raises:
            TypeError: If the handler is a coroutine function
        """
        if inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
            getattr(handler, "__call__", None)
        ):
            raise TypeError(
                f"Handler for {kind.value} on table '{table}' is a coroutine function; "
                "handlers must be synchronous callables"
            )

        subscription_id = subscription_id or default_subscription_id(
            kind, table, self._connector_id
        )

        if subscription_id in self._subscriptions:
            log.warning("subscription_replaced", subscription_id=subscription_id)

        self._subscriptions[subscription_id] = Subscription(
            kind=kind,
            table=table,
            raw_mode=raw_mode,
            handler=handler,
            subscription_id=subscription_id,
        )
        log.info(
            "subscription_registered",
            subscription_id=subscription_id,
            kind=kind.value,
            table=table,
            raw_mode=raw_mode,
        )
        return subscription_id

    def watched_tables(self) -> list[str]:
        """Get the tables with at least one subscription, in discovery order."""
        tables: dict[str, None] = {}
        for subscription in self._subscriptions.values():
            tables.setdefault(subscription.table, None)
        return list(tables)

    def fire(
        self,
        predicate: SubscriptionPredicate,
        records: Iterable[Record],
        table: str,
        kind: EventKind,
        raw: bool = False,
    ) -> tuple[int, list[HandlerError]]:
        """
        Invoke every matching subscription once per record, sequentially.

        A handler that raises does not stop delivery to the other
        subscriptions or records.

        Args:
            predicate: Selects the subscriptions to invoke
            records: Changed records
            table: Table the records belong to
            kind: Kind of change
            raw: Whether the records are raw (undebounced) modifications

        Returns:
            Tuple of (successful invocations, handler errors)
        """
        records = list(records)
        matching = [s for s in self._subscriptions.values() if predicate(s)]
        if not records or not matching:
            return 0, []

        delivered = 0
        errors: list[HandlerError] = []

        for subscription in matching:
            for record in records:
                event = ChangeEvent(
                    record_id=record.id,
                    fields=dict(record.fields),
                    table=table,
                    kind=kind,
                    raw=raw,
                )
                try:
                    subscription.handler(event)
                    delivered += 1
                except Exception as e:
                    error = HandlerError(subscription.subscription_id, event, e)
                    log.error(
                        "handler_failed",
                        subscription_id=subscription.subscription_id,
                        table=table,
                        record_id=record.id,
                        kind=kind.value,
                        error=str(e),
                    )
                    errors.append(error)

        return delivered, errors

    def dispatch(
        self,
        tables: Iterable[str],
        diff: DiffResult,
        settled: Mapping[str, Table],
    ) -> DispatchStats:
        """
        Deliver one tick's changes in deterministic order.

        For each table: additions, settled modifications, raw modifications,
        then removals.

        Args:
            tables: Watched tables, in discovery order
            diff: Raw changes detected this tick
            settled: Settled modifications by table

        Returns:
            DispatchStats with delivery counts and handler errors
        """
        stats = DispatchStats()

        for table in tables:
            table_diff = diff.for_table(table)
            steps = [
                ("additions", EventKind.RECORD_ADDED, table_diff.additions, False),
                (
                    "settled_modifications",
                    EventKind.RECORD_MODIFIED,
                    settled.get(table, {}),
                    False,
                ),
                ("raw_modifications", EventKind.RECORD_MODIFIED, table_diff.modifications, True),
                ("removals", EventKind.RECORD_DELETED, table_diff.removals, False),
            ]

            for counter, kind, records, raw in steps:
                if not records:
                    continue
                delivered, errors = self.fire(
                    subscription_filter(kind, table, raw),
                    records.values(),
                    table=table,
                    kind=kind,
                    raw=raw,
                )
                setattr(stats, counter, getattr(stats, counter) + delivered)
                stats.handler_errors.extend(str(error) for error in errors)

        log.info(
            "events_dispatched",
            total_events=stats.total_events,
            handler_errors=len(stats.handler_errors),
        )
        return stats
