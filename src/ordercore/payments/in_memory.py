"""
In-memory payment provider for tests.

Behaves like a provider that always answers immediately: intents get
sequential ids, refunds are recorded, and webhooks are signed with
HMAC-SHA256 in the ``t=<timestamp>,v1=<hex digest>`` header format used by
Stripe. Failures can be injected per operation.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Any

from ordercore.exceptions import ProviderError, WebhookVerificationError
from ordercore.payments.provider import (
    PAYMENT_SUCCEEDED_EVENT,
    PaymentIntent,
    ProviderEvent,
    Refund,
)
from ordercore.serialization import json_dumps, json_loads


@dataclass
class ProviderCall:
    """One recorded provider call."""

    operation: str
    payment_reference: str | None = None
    amount_minor_units: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class InMemoryPaymentProvider:
    """
    Deterministic payment provider fake.

    Example:
        >>> provider = InMemoryPaymentProvider()
        >>> intent = await provider.create_intent(2000, "usd", {"order_id": "..."})
        >>> payload = provider.build_event(intent.id, event_id="evt_1")
        >>> signature = provider.sign(payload, "whsec_test")
        >>> event = provider.verify_webhook(payload, signature, "whsec_test")
    """

    def __init__(self, name: str = "STRIPE", tolerance: int = 300) -> None:
        self.name = name
        self._tolerance = tolerance
        self._intent_counter = 0
        self._refund_counter = 0
        self._failures: dict[str, str] = {}
        self.calls: list[ProviderCall] = []
        self.refunds: dict[str, Refund] = {}

    def fail_next(self, operation: str, message: str = "provider unavailable") -> None:
        """Make the next ``create_intent`` or ``refund`` call raise ProviderError."""
        self._failures[operation] = message

    def _maybe_fail(self, operation: str) -> None:
        message = self._failures.pop(operation, None)
        if message is not None:
            raise ProviderError(operation, message, provider=self.name)

    async def create_intent(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        self.calls.append(
            ProviderCall(
                "create_intent",
                amount_minor_units=amount_minor_units,
                currency=currency,
                metadata=dict(metadata),
            )
        )
        self._maybe_fail("create_intent")
        self._intent_counter += 1
        intent_id = f"pi_test_{self._intent_counter:06d}"
        return PaymentIntent(id=intent_id, client_secret=f"{intent_id}_secret")

    async def refund(
        self,
        payment_reference: str,
        amount_minor_units: int | None = None,
    ) -> Refund:
        self.calls.append(
            ProviderCall(
                "refund",
                payment_reference=payment_reference,
                amount_minor_units=amount_minor_units,
            )
        )
        self._maybe_fail("refund")
        if payment_reference in self.refunds:
            raise ProviderError(
                "refund",
                f"charge for {payment_reference} has already been refunded",
                provider=self.name,
            )
        self._refund_counter += 1
        refund = Refund(refund_id=f"re_test_{self._refund_counter:06d}", status="succeeded")
        self.refunds[payment_reference] = refund
        return refund

    def build_event(
        self,
        payment_reference: str,
        event_id: str,
        event_type: str = PAYMENT_SUCCEEDED_EVENT,
    ) -> bytes:
        """Build a raw webhook body for a payment intent event."""
        body = {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": payment_reference, "object": "payment_intent"}},
        }
        return json_dumps(body).encode()

    def sign(self, payload: bytes, secret: str, timestamp: int | None = None) -> str:
        """Sign a payload the way ``verify_webhook`` expects."""
        ts = int(time.time()) if timestamp is None else timestamp
        digest = _digest(payload, secret, ts)
        return f"t={ts},v1={digest}"

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> ProviderEvent:
        parts: dict[str, str] = {}
        for item in signature.split(","):
            key, sep, value = item.partition("=")
            if sep:
                parts[key.strip()] = value.strip()

        if "t" not in parts or "v1" not in parts:
            raise WebhookVerificationError("malformed signature header")
        try:
            ts = int(parts["t"])
        except ValueError as e:
            raise WebhookVerificationError("malformed timestamp") from e
        if abs(time.time() - ts) > self._tolerance:
            raise WebhookVerificationError("timestamp outside the tolerance zone")

        expected = _digest(payload, secret, ts)
        if not hmac.compare_digest(expected, parts["v1"]):
            raise WebhookVerificationError("no signatures found matching the expected signature")

        try:
            body: dict[str, Any] = json_loads(payload)
        except ValueError as e:
            raise WebhookVerificationError(f"invalid payload: {e}") from e

        obj = body.get("data", {}).get("object", {})
        return ProviderEvent(
            id=body["id"],
            type=body["type"],
            object_id=obj.get("id"),
            data=obj,
        )


def _digest(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


__all__ = ["InMemoryPaymentProvider", "ProviderCall"]
