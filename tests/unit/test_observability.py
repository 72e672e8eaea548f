"""
Unit tests for tracers and service spans.
"""

from uuid import uuid4

import pytest

from ordercore.exceptions import EmptyCartError, InsufficientStockError
from ordercore.observability import (
    ATTR_ORDER_ID,
    MockTracer,
    NullTracer,
    SpanKind,
    Tracer,
    create_tracer,
)
from ordercore.payments import StripePaymentProvider
from ordercore.services import OrderService


class TestTracers:
    def test_disabled_tracing_uses_null_tracer(self):
        tracer = create_tracer(__name__, enable_tracing=False)

        assert isinstance(tracer, NullTracer)
        assert isinstance(tracer, Tracer)
        assert tracer.enabled is False
        with tracer.span("anything", {"key": "value"}, kind=SpanKind.CLIENT) as span:
            assert span is None

    def test_mock_tracer_records_spans(self):
        tracer = MockTracer()
        with tracer.span("first"):
            pass
        with tracer.span("second", {"a": 1}, kind=SpanKind.CLIENT):
            pass

        assert tracer.span_names == ["first", "second"]
        assert tracer.spans[1].kind is SpanKind.CLIENT
        assert tracer.spans[1].attributes == {"a": 1}
        tracer.clear()
        assert tracer.spans == []

    def test_mock_tracer_records_error_kind(self):
        tracer = MockTracer()

        with pytest.raises(InsufficientStockError):
            with tracer.span("ordercore.order.create"):
                raise InsufficientStockError(uuid4(), available=1, requested=2)

        assert tracer.spans[0].error_kind == "InsufficientStock"

    def test_other_exceptions_leave_error_kind_unset(self):
        tracer = MockTracer()

        with pytest.raises(RuntimeError):
            with tracer.span("ordercore.order.create"):
                raise RuntimeError("boom")

        assert tracer.spans[0].error_kind is None


class TestServiceSpans:
    """Services wrap their operations in named spans."""

    @pytest.mark.asyncio
    async def test_order_lifecycle_spans(
        self, store, provider, config, carts, tracer, customer_id, make_product
    ):
        orders = OrderService(store, provider, config=config, tracer=tracer)
        product = await make_product()
        await carts.add_item(customer_id, product.id, 1)

        result = await orders.checkout(customer_id)
        await orders.mark_payment_paid(result.payment_intent_id)

        assert tracer.span_names == [
            "ordercore.order.create",
            "ordercore.order.create_payment_intent",
            "ordercore.payment.mark_paid",
        ]
        assert tracer.spans[1].attributes[ATTR_ORDER_ID] == str(result.order_id)
        assert all(span.error_kind is None for span in tracer.spans)

    @pytest.mark.asyncio
    async def test_failed_checkout_span(self, store, provider, config, tracer, customer_id):
        orders = OrderService(store, provider, config=config, tracer=tracer)

        with pytest.raises(EmptyCartError):
            await orders.create_order(customer_id)

        assert tracer.spans[0].name == "ordercore.order.create"
        assert tracer.spans[0].error_kind == "EmptyCart"

    @pytest.mark.asyncio
    async def test_stripe_calls_are_client_spans(self, monkeypatch, tracer):
        import stripe

        class FakeIntent:
            id = "pi_123"
            client_secret = "pi_123_secret"

        monkeypatch.setattr(stripe.PaymentIntent, "create", lambda **kwargs: FakeIntent())
        provider = StripePaymentProvider("sk_test_x", tracer=tracer)

        await provider.create_intent(2000, "usd", {"order_id": "o1"})

        assert tracer.spans[0].name == "ordercore.stripe.create_intent"
        assert tracer.spans[0].kind is SpanKind.CLIENT
