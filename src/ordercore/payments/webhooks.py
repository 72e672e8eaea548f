"""
Payment webhook handling.

The handler verifies the provider signature before touching any state,
applies ``payment_intent.succeeded`` events through
``OrderService.mark_payment_paid`` and tells the HTTP layer whether to
acknowledge the delivery. Raising means "let the provider redeliver".
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from ordercore.exceptions import (
    DuplicateWebhookEventError,
    PaymentAlreadyCapturedError,
    PaymentNotFoundError,
    ValidationError,
)
from ordercore.observability import (
    ATTR_WEBHOOK_EVENT_ID,
    ATTR_WEBHOOK_EVENT_TYPE,
    Tracer,
    create_tracer,
)
from ordercore.payments.provider import PAYMENT_SUCCEEDED_EVENT, PaymentProvider

if TYPE_CHECKING:
    from ordercore.services.orders import OrderService

logger = logging.getLogger(__name__)


class WebhookOutcome(StrEnum):
    """How a verified webhook delivery was handled; all outcomes are acknowledged."""

    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    DUPLICATE = "DUPLICATE"
    UNMATCHED = "UNMATCHED"


class PaymentWebhookHandler:
    """
    Verify and apply payment provider webhooks.

    Args:
        provider: Provider that verifies signatures and parses events
        orders: Order service that applies payment confirmations
        secret: Webhook signing secret
        tracer: Optional tracer
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> handler = PaymentWebhookHandler(provider, orders, config.webhook_secret)
        >>> outcome = await handler.handle(request_body, request.headers["Stripe-Signature"])
    """

    def __init__(
        self,
        provider: PaymentProvider,
        orders: OrderService,
        secret: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        secret = secret or orders.config.webhook_secret
        if not secret:
            raise ValidationError("A webhook signing secret is required")
        self._provider = provider
        self._orders = orders
        self._secret = secret
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def handle(self, payload: bytes, signature: str) -> WebhookOutcome:
        """
        Handle one webhook delivery.

        Raises:
            WebhookVerificationError: If the signature is invalid (reject with 400)
            Exception: Any other failure; the delivery should not be acknowledged
        """
        event = self._provider.verify_webhook(payload, signature, self._secret)

        with self._tracer.span(
            "ordercore.webhook.handle",
            {ATTR_WEBHOOK_EVENT_ID: event.id, ATTR_WEBHOOK_EVENT_TYPE: event.type},
        ):
            if event.type != PAYMENT_SUCCEEDED_EVENT:
                logger.debug("Ignoring webhook event %s of type %s", event.id, event.type)
                return WebhookOutcome.IGNORED

            if await self._orders.webhook_event_seen(event.id):
                logger.info("Webhook event %s already processed", event.id)
                return WebhookOutcome.DUPLICATE

            if not event.object_id:
                logger.warning("Webhook event %s carries no payment reference", event.id)
                return WebhookOutcome.UNMATCHED

            try:
                await self._orders.mark_payment_paid(
                    event.object_id,
                    provider_event_id=event.id,
                    event_type=event.type,
                )
            except DuplicateWebhookEventError:
                logger.info("Webhook event %s was processed concurrently", event.id)
                return WebhookOutcome.DUPLICATE
            except PaymentNotFoundError:
                logger.warning(
                    "Webhook event %s references unknown payment %s",
                    event.id,
                    event.object_id,
                    extra={"provider_ref": event.object_id},
                )
                return WebhookOutcome.UNMATCHED
            except PaymentAlreadyCapturedError as e:
                logger.warning(
                    "Webhook event %s not applied: %s",
                    event.id,
                    e,
                    extra={"provider_ref": event.object_id, "order_id": str(e.order_id)},
                )
                return WebhookOutcome.UNMATCHED

            return WebhookOutcome.PROCESSED


__all__ = ["PaymentWebhookHandler", "WebhookOutcome"]
