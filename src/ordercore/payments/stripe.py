"""
Stripe payment provider.

Built on the official ``stripe`` SDK. The SDK is synchronous, so network
calls run in a worker thread with ``asyncio.to_thread``. SDK errors are
translated into ordercore exceptions at this boundary.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import stripe

from ordercore.exceptions import ProviderError, WebhookVerificationError
from ordercore.observability import (
    ATTR_PAYMENT_AMOUNT_MINOR,
    ATTR_PAYMENT_PROVIDER,
    ATTR_PAYMENT_PROVIDER_REF,
    SpanKind,
    Tracer,
    create_tracer,
)
from ordercore.payments.provider import PaymentIntent, ProviderEvent, Refund

logger = logging.getLogger(__name__)


class StripePaymentProvider:
    """
    Payment provider backed by Stripe PaymentIntents.

    Args:
        api_key: Stripe secret key (``sk_...``)
        name: Provider name stored on Payment rows
        tracer: Optional tracer
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> provider = StripePaymentProvider(config.stripe_api_key)
        >>> intent = await provider.create_intent(2000, "usd", {"order_id": str(order.id)})
    """

    def __init__(
        self,
        api_key: str,
        name: str = "STRIPE",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._api_key = api_key
        self.name = name
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def create_intent(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: dict[str, str],
    ) -> PaymentIntent:
        with self._tracer.span(
            "ordercore.stripe.create_intent",
            {ATTR_PAYMENT_PROVIDER: self.name, ATTR_PAYMENT_AMOUNT_MINOR: amount_minor_units},
            kind=SpanKind.CLIENT,
        ):
            try:
                intent = await asyncio.to_thread(
                    stripe.PaymentIntent.create,
                    amount=amount_minor_units,
                    currency=currency,
                    metadata=metadata,
                    automatic_payment_methods={"enabled": True},
                    api_key=self._api_key,
                )
            except stripe.StripeError as e:
                logger.error(
                    "Stripe payment intent creation failed: %s",
                    e,
                    extra={"metadata": metadata},
                )
                raise ProviderError("create_intent", str(e), provider=self.name) from e

            logger.info(
                "Created Stripe payment intent %s",
                intent.id,
                extra={"provider_ref": intent.id, "amount_minor_units": amount_minor_units},
            )
            return PaymentIntent(id=intent.id, client_secret=intent.client_secret or "")

    async def refund(
        self,
        payment_reference: str,
        amount_minor_units: int | None = None,
    ) -> Refund:
        with self._tracer.span(
            "ordercore.stripe.refund",
            {ATTR_PAYMENT_PROVIDER: self.name, ATTR_PAYMENT_PROVIDER_REF: payment_reference},
            kind=SpanKind.CLIENT,
        ):
            params: dict[str, Any] = {"payment_intent": payment_reference}
            if amount_minor_units is not None:
                params["amount"] = amount_minor_units
            try:
                refund = await asyncio.to_thread(
                    stripe.Refund.create, api_key=self._api_key, **params
                )
            except stripe.StripeError as e:
                logger.error(
                    "Stripe refund failed for %s: %s",
                    payment_reference,
                    e,
                    extra={"provider_ref": payment_reference},
                )
                raise ProviderError("refund", str(e), provider=self.name) from e

            return Refund(refund_id=refund.id, status=refund.status)

    def verify_webhook(self, payload: bytes, signature: str, secret: str) -> ProviderEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature invalid: %s", e)
            raise WebhookVerificationError(str(e)) from e
        except ValueError as e:
            # construct_event raises ValueError for a body that is not JSON
            logger.warning("Stripe webhook payload invalid: %s", e)
            raise WebhookVerificationError(f"invalid payload: {e}") from e

        # StripeObject is not a dict in current SDK releases
        body = event.to_dict()
        obj = dict(body["data"]["object"])
        return ProviderEvent(
            id=body["id"],
            type=body["type"],
            object_id=obj.get("id"),
            data=obj,
        )


__all__ = ["StripePaymentProvider"]
