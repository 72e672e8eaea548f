"""
Domain events and the event type registry.

Importing this package registers the order core events in
``default_registry``.
"""

from ordercore.events.base import DomainEvent
from ordercore.events.orders import (
    InvoiceRequested,
    LowStockDetected,
    OrderConfirmed,
    OrderShipped,
    OrderStatusChanged,
    RefundProcessed,
)
from ordercore.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
    register_event,
)

__all__ = [
    "DomainEvent",
    "EventRegistry",
    "EventTypeNotFoundError",
    "DuplicateEventTypeError",
    "default_registry",
    "register_event",
    "OrderConfirmed",
    "InvoiceRequested",
    "OrderShipped",
    "OrderStatusChanged",
    "RefundProcessed",
    "LowStockDetected",
]
