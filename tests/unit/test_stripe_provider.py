"""
Unit tests for StripePaymentProvider.

The Stripe SDK resources are monkeypatched; no network calls are made.
Webhook verification runs against the real SDK with payloads signed the
way Stripe signs them.
"""

from types import SimpleNamespace

import pytest
import stripe

from ordercore.exceptions import ProviderError, WebhookVerificationError
from ordercore.payments import InMemoryPaymentProvider, PaymentProvider, StripePaymentProvider


@pytest.fixture
def stripe_provider() -> StripePaymentProvider:
    return StripePaymentProvider("sk_test_123", enable_tracing=False)


class TestCreateIntent:
    """Tests for StripePaymentProvider.create_intent."""

    def test_implements_protocol(self, stripe_provider):
        assert isinstance(stripe_provider, PaymentProvider)

    @pytest.mark.asyncio
    async def test_creates_payment_intent(self, stripe_provider, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="pi_123", client_secret="pi_123_secret_abc")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

        intent = await stripe_provider.create_intent(2000, "usd", {"order_id": "o-1"})

        assert intent.id == "pi_123"
        assert intent.client_secret == "pi_123_secret_abc"
        assert calls == [
            {
                "amount": 2000,
                "currency": "usd",
                "metadata": {"order_id": "o-1"},
                "automatic_payment_methods": {"enabled": True},
                "api_key": "sk_test_123",
            }
        ]

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_provider_error(self, stripe_provider, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.StripeError("Your card was declined.")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

        with pytest.raises(ProviderError) as exc_info:
            await stripe_provider.create_intent(2000, "usd", {})

        assert exc_info.value.operation == "create_intent"
        assert exc_info.value.provider == "STRIPE"
        assert "declined" in str(exc_info.value)


class TestRefund:
    """Tests for StripePaymentProvider.refund."""

    @pytest.mark.asyncio
    async def test_full_refund(self, stripe_provider, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="re_1", status="succeeded")

        monkeypatch.setattr(stripe.Refund, "create", fake_create)

        refund = await stripe_provider.refund("pi_123")

        assert refund.refund_id == "re_1"
        assert refund.status == "succeeded"
        assert calls == [{"api_key": "sk_test_123", "payment_intent": "pi_123"}]

    @pytest.mark.asyncio
    async def test_partial_refund_sends_amount(self, stripe_provider, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(id="re_2", status="pending")

        monkeypatch.setattr(stripe.Refund, "create", fake_create)

        await stripe_provider.refund("pi_123", 550)

        assert calls[0]["amount"] == 550

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_provider_error(self, stripe_provider, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.StripeError("Charge has already been refunded.")

        monkeypatch.setattr(stripe.Refund, "create", fake_create)

        with pytest.raises(ProviderError, match="refund failed"):
            await stripe_provider.refund("pi_123")


class TestVerifyWebhook:
    """Tests for StripePaymentProvider.verify_webhook with real signatures."""

    @pytest.fixture
    def signer(self) -> InMemoryPaymentProvider:
        return InMemoryPaymentProvider()

    def test_valid_event(self, stripe_provider, signer):
        payload = signer.build_event("pi_123", event_id="evt_1")

        event = stripe_provider.verify_webhook(payload, signer.sign(payload, "whsec_x"), "whsec_x")

        assert event.id == "evt_1"
        assert event.type == "payment_intent.succeeded"
        assert event.object_id == "pi_123"
        assert type(event.data) is dict
        assert event.data["id"] == "pi_123"
        assert event.data["object"] == "payment_intent"

    def test_bad_signature(self, stripe_provider, signer):
        payload = signer.build_event("pi_123", event_id="evt_1")

        with pytest.raises(WebhookVerificationError):
            stripe_provider.verify_webhook(payload, signer.sign(payload, "whsec_x"), "whsec_y")

    def test_invalid_json(self, stripe_provider, signer):
        payload = b"not json"

        with pytest.raises(WebhookVerificationError):
            stripe_provider.verify_webhook(payload, signer.sign(payload, "whsec_x"), "whsec_x")
