"""
Domain events emitted by the order core.

Each event is written to the outbox in the transaction that causes it and
maps to one notification or invoicing side effect.
"""

from decimal import Decimal
from uuid import UUID

from ordercore.events.base import DomainEvent
from ordercore.events.registry import register_event
from ordercore.types import OrderStatus


@register_event
class OrderConfirmed(DomainEvent):
    """Payment for an order succeeded; the customer gets a confirmation."""

    aggregate_type: str = "Order"
    order_reference: str
    customer_id: UUID
    total: Decimal


@register_event
class InvoiceRequested(DomainEvent):
    """An invoice must be generated for a paid order."""

    aggregate_type: str = "Order"
    order_reference: str


@register_event
class OrderShipped(DomainEvent):
    """Tracking information was attached to an order."""

    aggregate_type: str = "Order"
    tracking_number: str
    shipping_carrier: str


@register_event
class OrderStatusChanged(DomainEvent):
    """An order moved from one status to another."""

    aggregate_type: str = "Order"
    old_status: OrderStatus
    new_status: OrderStatus


@register_event
class RefundProcessed(DomainEvent):
    """The payment provider refunded an order."""

    aggregate_type: str = "Order"
    refund_id: str
    amount: Decimal


@register_event
class LowStockDetected(DomainEvent):
    """A product's stock is at or below its low-stock threshold."""

    aggregate_type: str = "Product"
    product_name: str
    stock: int
    low_stock_threshold: int


__all__ = [
    "OrderConfirmed",
    "InvoiceRequested",
    "OrderShipped",
    "OrderStatusChanged",
    "RefundProcessed",
    "LowStockDetected",
]
