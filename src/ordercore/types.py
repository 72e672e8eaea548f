"""
Shared enumerations and type aliases for the ordercore library.

The order status graph lives here so the services, the stores and the
tests all agree on which transitions exist.
"""

from enum import StrEnum


class OrderStatus(StrEnum):
    """Lifecycle status of an order."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"


class PaymentStatus(StrEnum):
    """Status of a single payment-provider attempt."""

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class ActorType(StrEnum):
    """Who performed an audited action."""

    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"
    USER = "USER"


class EntityType(StrEnum):
    """Entity kinds recorded in the audit trail."""

    ORDER = "ORDER"
    PAYMENT = "PAYMENT"
    PRODUCT = "PRODUCT"


class AuditAction(StrEnum):
    """Audit log action names."""

    ORDER_CREATED = "ORDER_CREATED"
    MARK_PAYMENT_PAID = "MARK_PAYMENT_PAID"
    STATUS_UPDATE = "STATUS_UPDATE"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    SHIPPING_UPDATE = "SHIPPING_UPDATE"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    AMOUNT_UPDATE = "AMOUNT_UPDATE"
    REFERENCE_CODE_UPDATE = "REFERENCE_CODE_UPDATE"
    STOCK_ADJUSTMENT = "STOCK_ADJUSTMENT"


# Forward path plus the cancel and refund side branches.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUND_PENDING}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUND_PENDING}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUND_PENDING}),
    OrderStatus.REFUND_PENDING: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# End states of the fulfilment path. DELIVERED still admits the refund branch.
TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.CANCELLED, OrderStatus.DELIVERED, OrderStatus.REFUNDED}
)

REFUNDABLE_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
)


def is_valid_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    """Return True if ``to_status`` is a modeled successor of ``from_status``."""
    return to_status in ORDER_TRANSITIONS[from_status]


__all__ = [
    "OrderStatus",
    "PaymentStatus",
    "ActorType",
    "EntityType",
    "AuditAction",
    "ORDER_TRANSITIONS",
    "TERMINAL_STATUSES",
    "REFUNDABLE_STATUSES",
    "is_valid_transition",
]
