"""
Unit tests for webhook verification and PaymentWebhookHandler.

Signed payloads are built with InMemoryPaymentProvider.sign, which uses
the same ``t=<timestamp>,v1=<hmac>`` scheme as Stripe.
"""

import time

import pytest
import pytest_asyncio

from ordercore.config import OrderCoreConfig
from ordercore.exceptions import ValidationError, WebhookVerificationError
from ordercore.payments import (
    InMemoryPaymentProvider,
    PaymentProvider,
    PaymentWebhookHandler,
    WebhookOutcome,
)
from ordercore.services import OrderService
from ordercore.types import AuditAction, EntityType, OrderStatus, PaymentStatus


class TestInMemoryProviderSignatures:
    """Tests for InMemoryPaymentProvider.verify_webhook."""

    @pytest.fixture
    def payload(self, provider: InMemoryPaymentProvider) -> bytes:
        return provider.build_event("pi_test_000001", event_id="evt_1")

    def test_implements_protocol(self, provider):
        assert isinstance(provider, PaymentProvider)

    def test_valid_signature(self, provider, payload):
        event = provider.verify_webhook(payload, provider.sign(payload, "whsec_a"), "whsec_a")

        assert event.id == "evt_1"
        assert event.type == "payment_intent.succeeded"
        assert event.object_id == "pi_test_000001"

    def test_wrong_secret(self, provider, payload):
        with pytest.raises(WebhookVerificationError):
            provider.verify_webhook(payload, provider.sign(payload, "whsec_a"), "whsec_b")

    def test_tampered_payload(self, provider, payload):
        signature = provider.sign(payload, "whsec_a")
        tampered = payload.replace(b"pi_test_000001", b"pi_test_999999")

        with pytest.raises(WebhookVerificationError):
            provider.verify_webhook(tampered, signature, "whsec_a")

    def test_stale_timestamp(self, provider, payload):
        signature = provider.sign(payload, "whsec_a", timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookVerificationError, match="tolerance"):
            provider.verify_webhook(payload, signature, "whsec_a")

    @pytest.mark.parametrize("header", ["", "garbage", "t=abc,v1=00", "v1=00"])
    def test_malformed_header(self, provider, payload, header):
        with pytest.raises(WebhookVerificationError):
            provider.verify_webhook(payload, header, "whsec_a")


class TestPaymentWebhookHandler:
    """Tests for PaymentWebhookHandler.handle."""

    @pytest.fixture
    def handler(self, provider, orders) -> PaymentWebhookHandler:
        return PaymentWebhookHandler(provider, orders, enable_tracing=False)

    @pytest_asyncio.fixture
    async def intent_id(self, place_order, orders, customer_id, make_product) -> str:
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        return (await orders.create_payment_intent(order.id)).payment_intent_id

    @pytest.fixture(autouse=True)
    def _secret(self, config: OrderCoreConfig) -> None:
        self.secret = config.webhook_secret

    def deliver(self, provider, handler, reference, event_id, event_type=None, secret=None):
        kwargs = {"event_type": event_type} if event_type else {}
        payload = provider.build_event(reference, event_id=event_id, **kwargs)
        return handler.handle(payload, provider.sign(payload, secret or self.secret))

    def test_requires_secret(self, provider, store):
        orders = OrderService(store, provider, config=OrderCoreConfig(), enable_tracing=False)
        with pytest.raises(ValidationError):
            PaymentWebhookHandler(provider, orders)

    @pytest.mark.asyncio
    async def test_processes_payment(self, provider, handler, orders, audit, intent_id):
        outcome = await self.deliver(provider, handler, intent_id, "evt_1")

        assert outcome == WebhookOutcome.PROCESSED
        order_id = (await audit.list_entries(entity_type=EntityType.ORDER))[0].entity_id
        assert (await orders.get_order(order_id)).status == OrderStatus.PROCESSING
        payment = (await orders.list_payments(order_id))[0]
        assert payment.status == PaymentStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, provider, handler, audit, intent_id):
        """A replayed event id is acknowledged without a second audit row."""
        await self.deliver(provider, handler, intent_id, "evt_1")

        outcome = await self.deliver(provider, handler, intent_id, "evt_1")

        assert outcome == WebhookOutcome.DUPLICATE
        entries = await audit.list_entries(entity_type=EntityType.PAYMENT)
        assert [e.action for e in entries] == [AuditAction.MARK_PAYMENT_PAID]

    @pytest.mark.asyncio
    async def test_new_event_for_paid_payment(self, provider, handler, audit, intent_id):
        """A different event id for an already paid intent changes nothing."""
        await self.deliver(provider, handler, intent_id, "evt_1")

        outcome = await self.deliver(provider, handler, intent_id, "evt_2")

        assert outcome == WebhookOutcome.PROCESSED
        assert len(await audit.list_entries(entity_type=EntityType.PAYMENT)) == 1

    @pytest.mark.asyncio
    async def test_other_event_types_ignored(self, provider, handler, orders, intent_id):
        outcome = await self.deliver(
            provider, handler, intent_id, "evt_1", event_type="payment_intent.created"
        )

        assert outcome == WebhookOutcome.IGNORED
        assert not await orders.webhook_event_seen("evt_1")

    @pytest.mark.asyncio
    async def test_unknown_payment(self, provider, handler):
        outcome = await self.deliver(provider, handler, "pi_unknown", "evt_1")
        assert outcome == WebhookOutcome.UNMATCHED

    @pytest.mark.asyncio
    async def test_bad_signature_changes_nothing(self, provider, handler, orders, intent_id):
        with pytest.raises(WebhookVerificationError):
            await self.deliver(provider, handler, intent_id, "evt_1", secret="whsec_wrong")

        assert not await orders.webhook_event_seen("evt_1")
        payments = [
            p
            for o in await orders.list_orders()
            for p in await orders.list_payments(o.id)
        ]
        assert [p.status for p in payments] == [PaymentStatus.PENDING]

    @pytest.mark.asyncio
    async def test_second_capture_unmatched(
        self, provider, handler, place_order, orders, customer_id, make_product
    ):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        first = await orders.create_payment_intent(order.id)
        second = await orders.create_payment_intent(order.id)
        await self.deliver(provider, handler, first.payment_intent_id, "evt_1")

        outcome = await self.deliver(provider, handler, second.payment_intent_id, "evt_2")

        assert outcome == WebhookOutcome.UNMATCHED
