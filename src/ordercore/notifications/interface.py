"""
Collaborators that deliver side effects.

The order core never calls these inline. State changes write outbox
events; ``OutboxPublisher`` later routes each event to a
``NotificationDispatcher`` or an ``InvoiceGenerator``. A failing
collaborator therefore delays a notification but never affects order
state.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol, runtime_checkable
from uuid import UUID

logger = logging.getLogger(__name__)


class NotificationKind(StrEnum):
    """Kinds of notification the order core asks for."""

    ORDER_CONFIRMED = "order_confirmed"
    ORDER_SHIPPED = "order_shipped"
    ORDER_STATUS_CHANGED = "order_status_changed"
    REFUND_PROCESSED = "refund_processed"
    LOW_STOCK = "low_stock"


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Sends a notification about an order (or a product, for LOW_STOCK)."""

    async def notify(self, kind: NotificationKind, entity_id: UUID) -> None:
        """Raise to have the outbox retry the delivery."""
        ...


@runtime_checkable
class InvoiceGenerator(Protocol):
    """Generates the invoice of a paid order."""

    async def generate(self, order_id: UUID) -> None:
        """Raise to have the outbox retry the delivery."""
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that only logs; the default when no transport is wired."""

    async def notify(self, kind: NotificationKind, entity_id: UUID) -> None:
        logger.info("Notification %s for %s", kind, entity_id, extra={"entity_id": str(entity_id)})


class LoggingInvoiceGenerator:
    """Invoice generator that only logs."""

    async def generate(self, order_id: UUID) -> None:
        logger.info("Invoice requested for order %s", order_id, extra={"order_id": str(order_id)})


class RecordingNotificationDispatcher:
    """
    Test dispatcher that records calls and can be told to fail.

    Example:
        >>> dispatcher = RecordingNotificationDispatcher(failures=1)
        >>> # first notify raises, the second is recorded
    """

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.sent: list[tuple[NotificationKind, UUID]] = []

    async def notify(self, kind: NotificationKind, entity_id: UUID) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError(f"notification transport unavailable ({kind})")
        self.sent.append((kind, entity_id))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.sent]


class RecordingInvoiceGenerator:
    """Test invoice generator that records order ids and can be told to fail."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.generated: list[UUID] = []

    async def generate(self, order_id: UUID) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("invoice service unavailable")
        self.generated.append(order_id)


__all__ = [
    "InvoiceGenerator",
    "LoggingInvoiceGenerator",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationKind",
    "RecordingInvoiceGenerator",
    "RecordingNotificationDispatcher",
]
