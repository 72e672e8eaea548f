"""Library exceptions for the ordercore package.

The hierarchy mirrors the error taxonomy of the order core:

- ``NotFoundError``: order, payment, product, address or audit row absent
- ``InvalidStateError``: operation attempted from a disallowed status
- ``ForbiddenError``: ownership or role mismatch
- ``InsufficientStockError``: stock check or guarded decrement failed
- ``ValidationError``: malformed input or configuration
- ``ProviderError``: the payment provider call failed

Every exception carries a stable ``kind`` string so callers can render
``{"error": kind, "message": ...}`` without matching on class names.
"""

from __future__ import annotations

import traceback
from typing import Any
from uuid import UUID


class OrderCoreError(Exception):
    """Base exception for ordercore library."""

    kind: str = "OrderCoreError"


# =============================================================================
# Taxonomy
# =============================================================================


class NotFoundError(OrderCoreError):
    """Raised when a referenced entity does not exist."""

    kind = "NotFound"


class InvalidStateError(OrderCoreError):
    """Raised when an operation is attempted from a disallowed current state."""

    kind = "InvalidState"


class ForbiddenError(OrderCoreError):
    """Raised when the caller does not own the entity it is acting on."""

    kind = "Forbidden"

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class ValidationError(OrderCoreError):
    """Raised when input or configuration is malformed."""

    kind = "ValidationError"


class ProviderError(OrderCoreError):
    """Raised when a payment provider call fails."""

    kind = "ProviderError"

    def __init__(self, operation: str, message: str, provider: str | None = None) -> None:
        self.operation = operation
        self.provider = provider
        prefix = f"{provider} " if provider else ""
        super().__init__(f"{prefix}{operation} failed: {message}")


class InsufficientStockError(OrderCoreError):
    """Raised when a product does not hold enough stock for a requested quantity."""

    kind = "InsufficientStock"

    def __init__(
        self,
        product_id: UUID,
        available: int,
        requested: int,
        product_name: str | None = None,
    ) -> None:
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.product_name = product_name
        label = product_name or str(product_id)
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}"
        )


# =============================================================================
# Not found
# =============================================================================


class OrderNotFoundError(NotFoundError):
    """Raised when an order cannot be found."""

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class PaymentNotFoundError(NotFoundError):
    """Raised when no payment matches a provider reference."""

    def __init__(self, provider: str, provider_ref: str) -> None:
        self.provider = provider
        self.provider_ref = provider_ref
        super().__init__(f"Payment not found: {provider}/{provider_ref}")


class ProductNotFoundError(NotFoundError):
    """Raised when a product cannot be found."""

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart has no line for a product."""

    def __init__(self, customer_id: UUID, product_id: UUID) -> None:
        self.customer_id = customer_id
        self.product_id = product_id
        super().__init__(f"Product {product_id} is not in the cart of customer {customer_id}")


class AuditLogNotFoundError(NotFoundError):
    """Raised when an audit log entry cannot be found."""

    def __init__(self, entry_id: UUID) -> None:
        self.entry_id = entry_id
        super().__init__(f"Audit log entry not found: {entry_id}")


# =============================================================================
# Checkout preconditions
# =============================================================================


class InvalidAddressError(ValidationError):
    """Raised when an address is missing or belongs to another customer."""

    kind = "InvalidAddress"

    def __init__(self, address_id: UUID, customer_id: UUID) -> None:
        self.address_id = address_id
        self.customer_id = customer_id
        super().__init__(f"Address {address_id} does not belong to customer {customer_id}")


class EmptyCartError(ValidationError):
    """Raised when checkout is attempted with no cart items."""

    kind = "EmptyCart"

    def __init__(self, customer_id: UUID) -> None:
        self.customer_id = customer_id
        super().__init__("Cart is empty")


# =============================================================================
# State machine
# =============================================================================


class InvalidOrderStateError(InvalidStateError):
    """Raised when an order is not in the status an operation requires."""

    def __init__(
        self,
        order_id: UUID,
        current_status: str,
        expected: str | tuple[str, ...],
        operation: str | None = None,
    ) -> None:
        self.order_id = order_id
        self.current_status = current_status
        self.expected = (expected,) if isinstance(expected, str) else tuple(expected)
        self.operation = operation
        wanted = " or ".join(self.expected)
        action = f" to {operation}" if operation else ""
        super().__init__(
            f"Order {order_id} is {current_status}; it must be {wanted}{action}"
        )


class InvalidStatusTransitionError(InvalidStateError):
    """Raised in strict mode when a status change is not an edge of the order graph."""

    def __init__(self, order_id: UUID, from_status: str, to_status: str) -> None:
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot move from {from_status} to {to_status}"
        )


class PaymentAlreadyCapturedError(InvalidStateError):
    """Raised when a second payment of an order would reach SUCCEEDED."""

    def __init__(self, order_id: UUID, captured_ref: str, provider_ref: str) -> None:
        self.order_id = order_id
        self.captured_ref = captured_ref
        self.provider_ref = provider_ref
        super().__init__(
            f"Order {order_id} was already paid by {captured_ref}; "
            f"refusing to capture {provider_ref}"
        )


class NoSuccessfulPaymentError(InvalidStateError):
    """Raised when a refund is processed for an order with no succeeded payment."""

    kind = "NoSuccessfulPayment"

    def __init__(self, order_id: UUID, provider: str) -> None:
        self.order_id = order_id
        self.provider = provider
        super().__init__(f"No successful {provider} payment found for order {order_id}")


# =============================================================================
# Webhooks and storage
# =============================================================================


class WebhookVerificationError(ForbiddenError):
    """Raised when a webhook payload fails signature verification."""

    kind = "WebhookVerificationFailed"

    def __init__(self, message: str) -> None:
        super().__init__(f"Webhook signature verification failed: {message}")


class DuplicateOrderReferenceError(OrderCoreError):
    """Raised by stores when a generated order reference already exists."""

    kind = "DuplicateOrderReference"

    def __init__(self, order_reference: str) -> None:
        self.order_reference = order_reference
        super().__init__(f"Order reference already exists: {order_reference}")


class DuplicateWebhookEventError(OrderCoreError):
    """Raised by stores when a provider event id was already recorded."""

    kind = "DuplicateWebhookEvent"

    def __init__(self, provider: str, event_id: str) -> None:
        self.provider = provider
        self.event_id = event_id
        super().__init__(f"Webhook event already processed: {provider}/{event_id}")


class DuplicatePaymentError(OrderCoreError):
    """Raised by stores when a (provider, provider_ref) pair already has a payment."""

    kind = "DuplicatePayment"

    def __init__(self, provider: str, provider_ref: str) -> None:
        self.provider = provider
        self.provider_ref = provider_ref
        super().__init__(f"Payment already recorded: {provider}/{provider_ref}")


class OutboxUnavailableError(OrderCoreError):
    """Raised when delivery bookkeeping is attempted on a transaction's outbox."""

    kind = "OutboxUnavailable"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(
            f"Outbox {operation} runs in the publisher, outside order transactions"
        )


def error_payload(exc: BaseException, debug: bool = False) -> dict[str, Any]:
    """
    Render an exception as the user-visible error shape.

    Args:
        exc: The exception to render
        debug: When True, include the formatted traceback (operator debug flag)

    Returns:
        Dict with ``error`` (kind) and ``message``, plus ``traceback`` in debug mode

    Example:
        >>> error_payload(OrderNotFoundError(order_id))
        {'error': 'NotFound', 'message': 'Order not found: ...'}
    """
    kind = exc.kind if isinstance(exc, OrderCoreError) else "InternalError"
    if isinstance(exc, OrderCoreError) or debug:
        message = str(exc)
    else:
        message = "Internal Server Error"
    payload: dict[str, Any] = {"error": kind, "message": message}
    if debug:
        payload["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return payload
