"""
Payment provider integration.

- PaymentProvider: protocol the order services call
- StripePaymentProvider: Stripe PaymentIntents and Refunds
- InMemoryPaymentProvider: deterministic fake for tests
- PaymentWebhookHandler: verified webhook -> mark_payment_paid
"""

from ordercore.payments.in_memory import InMemoryPaymentProvider, ProviderCall
from ordercore.payments.provider import (
    PAYMENT_SUCCEEDED_EVENT,
    PaymentIntent,
    PaymentProvider,
    ProviderEvent,
    Refund,
)
from ordercore.payments.stripe import StripePaymentProvider
from ordercore.payments.webhooks import PaymentWebhookHandler, WebhookOutcome

__all__ = [
    "PAYMENT_SUCCEEDED_EVENT",
    "PaymentIntent",
    "PaymentProvider",
    "ProviderEvent",
    "Refund",
    "StripePaymentProvider",
    "InMemoryPaymentProvider",
    "ProviderCall",
    "PaymentWebhookHandler",
    "WebhookOutcome",
]
