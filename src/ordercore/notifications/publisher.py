"""
Outbox publisher.

Drains pending outbox entries, rebuilds each typed event through the
event registry and routes it to the notification dispatcher or the
invoice generator. A failed delivery is retried on later passes and
marked failed once ``max_retries`` attempts have been used. Order state
is never touched here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from pydantic import ValidationError as PydanticValidationError

from ordercore.config import OrderCoreConfig
from ordercore.events.base import DomainEvent
from ordercore.events.orders import (
    InvoiceRequested,
    LowStockDetected,
    OrderConfirmed,
    OrderShipped,
    OrderStatusChanged,
    RefundProcessed,
)
from ordercore.events.registry import EventRegistry, EventTypeNotFoundError, default_registry
from ordercore.notifications.interface import (
    InvoiceGenerator,
    LoggingInvoiceGenerator,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
)
from ordercore.observability import (
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_OUTBOX_ID,
    Tracer,
    create_tracer,
)
from ordercore.repositories.outbox import OutboxEntry, OutboxRepository

logger = logging.getLogger(__name__)

_NOTIFICATION_KINDS: dict[type[DomainEvent], NotificationKind] = {
    OrderConfirmed: NotificationKind.ORDER_CONFIRMED,
    OrderShipped: NotificationKind.ORDER_SHIPPED,
    OrderStatusChanged: NotificationKind.ORDER_STATUS_CHANGED,
    RefundProcessed: NotificationKind.REFUND_PROCESSED,
    LowStockDetected: NotificationKind.LOW_STOCK,
}


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one publisher pass."""

    published: int = 0
    retried: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.published + self.retried + self.failed


class OutboxPublisher:
    """
    Deliver outbox events to their collaborators.

    Args:
        outbox: Outbox repository to drain (``store.outbox``)
        dispatcher: Notification dispatcher (defaults to logging only)
        invoices: Invoice generator (defaults to logging only)
        config: Batch size, retry limit and poll interval
        registry: Event registry used to rebuild events
        tracer: Optional tracer
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> publisher = OutboxPublisher(store.outbox, dispatcher, invoices)
        >>> result = await publisher.publish_pending()
        >>> task = asyncio.create_task(publisher.run())
        >>> publisher.stop()
    """

    def __init__(
        self,
        outbox: OutboxRepository,
        dispatcher: NotificationDispatcher | None = None,
        invoices: InvoiceGenerator | None = None,
        config: OrderCoreConfig | None = None,
        registry: EventRegistry | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        config = config or OrderCoreConfig()
        self._outbox = outbox
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._invoices = invoices or LoggingInvoiceGenerator()
        self._registry = registry if registry is not None else default_registry
        self._batch_size = config.outbox_batch_size
        self._max_retries = config.outbox_max_retries
        self._poll_interval = config.outbox_poll_interval
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def publish_pending(self, limit: int | None = None) -> PublishResult:
        """
        Deliver up to ``limit`` pending entries (default: the batch size).

        Returns:
            Counts of entries published, scheduled for retry and failed
        """
        with self._tracer.span("ordercore.outbox.publish_pending") as span:
            entries = await self._outbox.get_pending_events(limit or self._batch_size)
            published = retried = failed = 0
            for entry in entries:
                outcome = await self._publish_entry(entry)
                if outcome == "published":
                    published += 1
                elif outcome == "retried":
                    retried += 1
                else:
                    failed += 1

            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(entries))
            if entries:
                logger.debug(
                    "Outbox pass: %d published, %d retried, %d failed",
                    published,
                    retried,
                    failed,
                )
            return PublishResult(published=published, retried=retried, failed=failed)

    async def _publish_entry(self, entry: OutboxEntry) -> str:
        with self._tracer.span(
            "ordercore.outbox.publish",
            {
                ATTR_OUTBOX_ID: str(entry.id),
                ATTR_EVENT_ID: str(entry.event_id),
                ATTR_EVENT_TYPE: entry.event_type,
            },
        ):
            try:
                event = self._registry.decode(entry.event_type, entry.event_data)
            except (EventTypeNotFoundError, PydanticValidationError) as e:
                logger.error(
                    "Outbox entry %s of type %s cannot be decoded: %s",
                    entry.id,
                    entry.event_type,
                    e,
                    extra={"outbox_id": str(entry.id)},
                )
                await self._outbox.mark_failed(entry.id, str(e))
                return "failed"

            try:
                await self.deliver(event)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                if entry.retry_count + 1 >= self._max_retries:
                    logger.error(
                        "Giving up on %s for %s after %d attempts",
                        entry.event_type,
                        entry.aggregate_id,
                        entry.retry_count + 1,
                        exc_info=True,
                        extra={"outbox_id": str(entry.id), "event_id": str(entry.event_id)},
                    )
                    await self._outbox.mark_failed(entry.id, error)
                    return "failed"
                logger.warning(
                    "Delivery of %s for %s failed (attempt %d/%d): %s",
                    entry.event_type,
                    entry.aggregate_id,
                    entry.retry_count + 1,
                    self._max_retries,
                    error,
                    extra={"outbox_id": str(entry.id), "event_id": str(entry.event_id)},
                )
                await self._outbox.increment_retry(entry.id, error)
                return "retried"

            await self._outbox.mark_published(entry.id)
            return "published"

    async def deliver(self, event: DomainEvent) -> None:
        """Route one event to its collaborator."""
        if isinstance(event, InvoiceRequested):
            await self._invoices.generate(event.aggregate_id)
            return
        kind = _NOTIFICATION_KINDS.get(type(event))
        if kind is None:
            logger.debug("No delivery route for %s", event.event_type)
            return
        await self._dispatcher.notify(kind, event.aggregate_id)

    async def run(self) -> None:
        """Publish pending entries every ``poll_interval`` seconds until ``stop()``."""
        self._stop_event.clear()
        self._running = True
        logger.info("Outbox publisher started")
        try:
            while not self._stop_event.is_set():
                try:
                    result = await self.publish_pending()
                except Exception:
                    logger.exception("Outbox publisher pass failed")
                    result = PublishResult()
                # A full batch means more may be waiting
                if result.total >= self._batch_size:
                    continue
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                except TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Outbox publisher stopped")

    def stop(self) -> None:
        """Ask ``run()`` to return after the current pass."""
        self._stop_event.set()


__all__ = ["OutboxPublisher", "PublishResult"]
