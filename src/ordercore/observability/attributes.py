"""
Standard span attributes for ordercore.

Attribute names follow OpenTelemetry semantic conventions where one exists
(``db.system``, ``db.name``) and use the ``ordercore.`` namespace otherwise.

Example:
    >>> from ordercore.observability.attributes import ATTR_ORDER_ID
    >>>
    >>> with tracer.span("ordercore.order.cancel", {ATTR_ORDER_ID: str(order_id)}):
    ...     pass
"""

# =============================================================================
# Order Attributes
# =============================================================================

ATTR_ORDER_ID = "ordercore.order.id"
"""Internal order identifier (UUID string)."""

ATTR_ORDER_REFERENCE = "ordercore.order.reference"
"""Human-readable order reference."""

ATTR_ORDER_STATUS = "ordercore.order.status"
"""Order status after the operation."""

ATTR_ORDER_PREVIOUS_STATUS = "ordercore.order.previous_status"
"""Order status before the operation."""

ATTR_CUSTOMER_ID = "ordercore.customer.id"
"""Customer identifier (UUID string)."""

ATTR_ITEM_COUNT = "ordercore.order.item_count"
"""Number of order or cart lines (integer)."""

# =============================================================================
# Inventory Attributes
# =============================================================================

ATTR_PRODUCT_ID = "ordercore.product.id"
"""Product identifier (UUID string)."""

ATTR_STOCK_DELTA = "ordercore.product.stock_delta"
"""Signed stock change (integer)."""

# =============================================================================
# Payment Attributes
# =============================================================================

ATTR_PAYMENT_PROVIDER = "ordercore.payment.provider"
"""Payment provider name (e.g. 'STRIPE')."""

ATTR_PAYMENT_PROVIDER_REF = "ordercore.payment.provider_ref"
"""Provider payment-intent identifier."""

ATTR_PAYMENT_AMOUNT_MINOR = "ordercore.payment.amount_minor"
"""Amount in minor units (integer)."""

ATTR_WEBHOOK_EVENT_ID = "ordercore.webhook.event_id"
"""Provider webhook event identifier."""

ATTR_WEBHOOK_EVENT_TYPE = "ordercore.webhook.event_type"
"""Provider webhook event type."""

# =============================================================================
# Actor / Audit Attributes
# =============================================================================

ATTR_ACTOR_ID = "ordercore.actor.id"
"""Who performed the operation."""

ATTR_ACTOR_TYPE = "ordercore.actor.type"
"""SYSTEM, ADMIN or USER."""

# =============================================================================
# Outbox Attributes
# =============================================================================

ATTR_EVENT_ID = "ordercore.event.id"
"""Outbox event identifier (UUID string)."""

ATTR_EVENT_TYPE = "ordercore.event.type"
"""Outbox event type name."""

ATTR_EVENT_COUNT = "ordercore.event.count"
"""Number of events in an operation (integer)."""

ATTR_OUTBOX_ID = "ordercore.outbox.id"
"""Outbox entry identifier (UUID string)."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_KIND = "ordercore.error.kind"
"""Stable kind of the OrderCoreError that ended the span."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system ('postgresql', 'sqlite', 'memory')."""

ATTR_DB_NAME = "db.name"
"""Database name or file path."""

ATTR_DB_OPERATION = "db.operation"
"""Operation name (e.g. 'transaction')."""

__all__ = [
    "ATTR_ORDER_ID",
    "ATTR_ORDER_REFERENCE",
    "ATTR_ORDER_STATUS",
    "ATTR_ORDER_PREVIOUS_STATUS",
    "ATTR_CUSTOMER_ID",
    "ATTR_ITEM_COUNT",
    "ATTR_PRODUCT_ID",
    "ATTR_STOCK_DELTA",
    "ATTR_PAYMENT_PROVIDER",
    "ATTR_PAYMENT_PROVIDER_REF",
    "ATTR_PAYMENT_AMOUNT_MINOR",
    "ATTR_WEBHOOK_EVENT_ID",
    "ATTR_WEBHOOK_EVENT_TYPE",
    "ATTR_ACTOR_ID",
    "ATTR_ACTOR_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_COUNT",
    "ATTR_OUTBOX_ID",
    "ATTR_ERROR_KIND",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
]
