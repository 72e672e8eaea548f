"""
Unit tests for the exceptions module.

Tests the error taxonomy, structured attributes and the rendered error
payload.
"""

from uuid import uuid4

import pytest

from ordercore.exceptions import (
    DuplicatePaymentError,
    DuplicateWebhookEventError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidOrderStateError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NoSuccessfulPaymentError,
    NotFoundError,
    OrderCoreError,
    OrderNotFoundError,
    PaymentAlreadyCapturedError,
    PaymentNotFoundError,
    ProviderError,
    ValidationError,
    WebhookVerificationError,
    error_payload,
)
from ordercore.types import OrderStatus


class TestTaxonomy:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize(
        ("exc_class", "parent"),
        [
            (OrderNotFoundError, NotFoundError),
            (PaymentNotFoundError, NotFoundError),
            (InvalidOrderStateError, InvalidStateError),
            (InvalidStatusTransitionError, InvalidStateError),
            (PaymentAlreadyCapturedError, InvalidStateError),
            (NoSuccessfulPaymentError, InvalidStateError),
            (InvalidAddressError, ValidationError),
            (EmptyCartError, ValidationError),
            (WebhookVerificationError, ForbiddenError),
        ],
    )
    def test_concrete_errors_sit_under_taxonomy(self, exc_class, parent):
        """Each concrete error derives from its taxonomy class and the base."""
        assert issubclass(exc_class, parent)
        assert issubclass(exc_class, OrderCoreError)

    def test_kinds_are_stable(self):
        """Kinds are the strings callers render."""
        assert OrderNotFoundError(uuid4()).kind == "NotFound"
        assert InvalidOrderStateError(uuid4(), "SHIPPED", "PENDING").kind == "InvalidState"
        assert ForbiddenError().kind == "Forbidden"
        assert InsufficientStockError(uuid4(), 0, 1).kind == "InsufficientStock"
        assert ProviderError("refund", "declined").kind == "ProviderError"
        assert NoSuccessfulPaymentError(uuid4(), "STRIPE").kind == "NoSuccessfulPayment"
        assert DuplicatePaymentError("STRIPE", "pi_1").kind == "DuplicatePayment"


class TestInsufficientStockError:
    """Tests for InsufficientStockError."""

    def test_reports_product_and_available_quantity(self):
        """The message names the product and both quantities."""
        product_id = uuid4()
        error = InsufficientStockError(product_id, available=2, requested=5, product_name="Tea")

        assert error.product_id == product_id
        assert error.available == 2
        assert error.requested == 5
        assert str(error) == "Insufficient stock for Tea. Available: 2, Requested: 5"

    def test_falls_back_to_product_id(self):
        """Without a name the product id is used."""
        product_id = uuid4()
        error = InsufficientStockError(product_id, available=0, requested=1)
        assert str(product_id) in str(error)


class TestInvalidOrderStateError:
    """Tests for InvalidOrderStateError."""

    def test_single_expected_status(self):
        """A single expected status is normalized to a tuple."""
        order_id = uuid4()
        error = InvalidOrderStateError(order_id, OrderStatus.SHIPPED, OrderStatus.PENDING, "cancel")

        assert error.current_status == OrderStatus.SHIPPED
        assert error.expected == (OrderStatus.PENDING,)
        assert "is SHIPPED" in str(error)
        assert "must be PENDING to cancel" in str(error)

    def test_several_expected_statuses(self):
        """Several expected statuses are joined with 'or'."""
        error = InvalidOrderStateError(uuid4(), "PENDING", ("PROCESSING", "SHIPPED"))
        assert "PROCESSING or SHIPPED" in str(error)


class TestProviderError:
    """Tests for ProviderError."""

    def test_message_includes_provider_and_operation(self):
        error = ProviderError("create_intent", "card declined", provider="STRIPE")
        assert error.operation == "create_intent"
        assert str(error) == "STRIPE create_intent failed: card declined"


class TestErrorPayload:
    """Tests for error_payload rendering."""

    def test_library_error(self):
        """Library errors render their kind and message."""
        order_id = uuid4()
        payload = error_payload(OrderNotFoundError(order_id))

        assert payload == {"error": "NotFound", "message": f"Order not found: {order_id}"}

    def test_unexpected_error_hides_message(self):
        """Unexpected errors do not leak their message without debug."""
        payload = error_payload(RuntimeError("connection string with password"))

        assert payload == {"error": "InternalError", "message": "Internal Server Error"}

    def test_debug_includes_traceback(self):
        """The debug flag adds the formatted traceback."""
        try:
            raise DuplicateWebhookEventError("STRIPE", "evt_1")
        except DuplicateWebhookEventError as e:
            payload = error_payload(e, debug=True)

        assert payload["error"] == "DuplicateWebhookEvent"
        assert "Traceback" in payload["traceback"]
        assert "DuplicateWebhookEventError" in payload["traceback"]

    def test_debug_shows_unexpected_message(self):
        payload = error_payload(RuntimeError("boom"), debug=True)
        assert payload["message"] == "boom"
        assert "traceback" in payload
