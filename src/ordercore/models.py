"""
Persistent records for the order core.

These are plain dataclasses shared by every store backend. Services load
them inside a transaction, mutate them and hand them back to the store;
nothing here talks to a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from ordercore.types import OrderStatus, PaymentStatus


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class Product:
    """
    Inventory ledger fields of a catalog product.

    Attributes:
        id: Product identifier
        name: Display name (used in stock error messages)
        price: List price
        sale_price: Optional sale price, takes precedence when set
        stock: Units on hand, never negative
        low_stock_threshold: Level at or below which a restock alert fires
        sku: Optional stock keeping unit
        is_active: Inactive products cannot be added to carts
    """

    name: str
    price: Decimal
    stock: int = 0
    low_stock_threshold: int = 0
    sale_price: Decimal | None = None
    sku: str | None = None
    is_active: bool = True
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.low_stock_threshold


@dataclass
class Address:
    """A customer address; the order core only checks its ownership."""

    customer_id: UUID
    line1: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = ""
    id: UUID = field(default_factory=uuid4)


@dataclass
class Cart:
    """One active cart per customer."""

    customer_id: UUID
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class CartItem:
    """A cart line; unique per (cart, product)."""

    cart_id: UUID
    product_id: UUID
    quantity: int
    id: UUID = field(default_factory=uuid4)


@dataclass
class OrderItem:
    """Frozen copy of a purchased line: product, quantity and unit price at checkout."""

    order_id: UUID
    product_id: UUID
    quantity: int
    price: Decimal
    id: UUID = field(default_factory=uuid4)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class Order:
    """
    Immutable financial snapshot created at checkout.

    ``total`` is computed once at creation and never recomputed from live
    product prices. Status and the fulfilment/refund fields change through
    the order services only.
    """

    customer_id: UUID
    order_reference: str
    total: Decimal
    currency: str = "usd"
    status: OrderStatus = OrderStatus.PENDING
    shipping_address_id: UUID | None = None
    billing_address_id: UUID | None = None
    tracking_number: str | None = None
    shipping_carrier: str | None = None
    refund_amount: Decimal | None = None
    refund_reason: str | None = None
    refund_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    cancelled_at: datetime | None = None
    refund_requested_at: datetime | None = None
    refund_at: datetime | None = None
    items: list[OrderItem] = field(default_factory=list)


@dataclass
class Payment:
    """
    One payment-provider attempt for an order.

    ``(provider, provider_ref)`` is unique. An order may collect several
    Payment rows across retries but only one of them reaches SUCCEEDED.
    """

    order_id: UUID
    provider: str
    provider_ref: str
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utc_now)
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


@dataclass
class WebhookEventRecord:
    """A provider webhook event that has been applied; unique per (provider, event_id)."""

    provider: str
    event_id: str
    event_type: str
    provider_ref: str | None = None
    received_at: datetime = field(default_factory=utc_now)


__all__ = [
    "Product",
    "Address",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "Payment",
    "WebhookEventRecord",
    "utc_now",
]
