"""
Payment provider abstraction.

The order core only needs three things from a provider: create a payment
intent, refund a captured payment and verify a signed webhook. Amounts
always cross this boundary as integer minor units.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    """A provider payment intent; ``client_secret`` is handed to the payer."""

    id: str
    client_secret: str


@dataclass(frozen=True)
class Refund:
    """A provider refund."""

    refund_id: str
    status: str | None = None


@dataclass(frozen=True)
class ProviderEvent:
    """
    A verified webhook event.

    Attributes:
        id: Provider event id, used for deduplication
        type: Event type, e.g. ``payment_intent.succeeded``
        object_id: Id of the object the event is about (the payment intent)
        data: The event's object payload
    """

    id: str
    type: str
    object_id: str | None
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PaymentProvider(Protocol):
    """
    Protocol for payment providers.

    Implementations:
    - StripePaymentProvider: the Stripe API
    - InMemoryPaymentProvider: deterministic fake for tests
    """

    name: str

    async def create_intent(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        """
        Create a payment intent.

        Raises:
            ProviderError: If the provider rejects the request
        """
        ...

    async def refund(
        self,
        payment_reference: str,
        amount_minor_units: int | None = None,
    ) -> Refund:
        """
        Refund a captured payment, fully or for ``amount_minor_units``.

        Raises:
            ProviderError: If the provider rejects the refund
        """
        ...

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> ProviderEvent:
        """
        Verify a webhook signature and parse the event.

        Raises:
            WebhookVerificationError: If the signature or payload is invalid
        """
        ...


__all__ = [
    "PAYMENT_SUCCEEDED_EVENT",
    "PaymentIntent",
    "PaymentProvider",
    "ProviderEvent",
    "Refund",
]
