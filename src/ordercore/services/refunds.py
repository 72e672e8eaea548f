"""
Refund workflow.

Orders move PROCESSING/SHIPPED/DELIVERED -> REFUND_PENDING on request and
REFUND_PENDING -> REFUNDED once the provider has refunded the captured
payment. The provider call happens outside any transaction; the local
state change is committed only after the provider succeeded.

A provider refund that succeeds followed by a failed local commit leaves
money returned while the order still reads REFUND_PENDING. That window is
not compensated automatically: it is logged at error level for manual
reconciliation.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from ordercore.audit.snapshots import AuditLogEntry, OrderSnapshot
from ordercore.cache import Cache, TTLCache
from ordercore.config import OrderCoreConfig
from ordercore.events.orders import OrderStatusChanged, RefundProcessed
from ordercore.exceptions import (
    ForbiddenError,
    InvalidOrderStateError,
    InvalidStatusTransitionError,
    NoSuccessfulPaymentError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from ordercore.models import Order, utc_now
from ordercore.observability import (
    ATTR_ACTOR_ID,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_PAYMENT_PROVIDER_REF,
    Tracer,
    create_tracer,
)
from ordercore.payments.provider import PaymentProvider
from ordercore.pricing import quantize_money, to_minor_units
from ordercore.stores.interface import OrderStore
from ordercore.types import (
    REFUNDABLE_STATUSES,
    ActorType,
    AuditAction,
    EntityType,
    OrderStatus,
    PaymentStatus,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

REFUND_STATUSES = (OrderStatus.REFUND_PENDING, OrderStatus.REFUNDED)


class RefundService:
    """
    Refund requests, provider refunds and admin refund corrections.

    Args:
        store: Order store providing transactions
        provider: Payment provider used for refunds
        config: Service configuration (defaults to ``OrderCoreConfig()``)
        cache: Order read cache shared with OrderService, invalidated on writes
        tracer: Optional tracer
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> refunds = RefundService(store, provider, cache=cache)
        >>> await refunds.request_refund(order.id, customer_id=order.customer_id)
        >>> await refunds.update_refund_status(order.id, OrderStatus.REFUNDED, "admin:1")
    """

    def __init__(
        self,
        store: OrderStore,
        provider: PaymentProvider,
        config: OrderCoreConfig | None = None,
        cache: Cache | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._provider = provider
        self._config = config or OrderCoreConfig()
        self._cache = cache if cache is not None else TTLCache(ttl=self._config.order_cache_ttl)
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def request_refund(
        self,
        order_id: UUID,
        customer_id: UUID | None = None,
        reason: str | None = None,
        performed_by: str | None = None,
    ) -> Order:
        """
        Move a paid order to REFUND_PENDING.

        When ``customer_id`` is given the request is made by that customer
        and must be for their own order; otherwise it is an admin request.

        Raises:
            OrderNotFoundError: If the order does not exist
            ForbiddenError: If the customer does not own the order
            InvalidOrderStateError: If the order is not PROCESSING, SHIPPED or DELIVERED
        """
        if customer_id is not None:
            actor_type = ActorType.USER
            actor = performed_by or str(customer_id)
        else:
            actor_type = ActorType.ADMIN
            actor = performed_by or "admin"

        with self._tracer.span(
            "ordercore.refund.request",
            {ATTR_ORDER_ID: str(order_id), ATTR_ACTOR_ID: actor},
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)
                if customer_id is not None and order.customer_id != customer_id:
                    raise ForbiddenError(
                        f"Order {order_id} does not belong to customer {customer_id}"
                    )
                if order.status not in REFUNDABLE_STATUSES:
                    raise InvalidOrderStateError(
                        order.id,
                        order.status,
                        tuple(sorted(REFUNDABLE_STATUSES)),
                        "request a refund",
                    )

                old_status = order.status
                now = utc_now()
                order.status = OrderStatus.REFUND_PENDING
                order.refund_requested_at = now
                order.refund_reason = reason
                order.updated_at = now
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.REFUND_REQUESTED,
                        performed_by=actor,
                        actor_type=actor_type,
                        before=OrderSnapshot(status=old_status),
                        after=OrderSnapshot(status=OrderStatus.REFUND_PENDING),
                    )
                )
                await tx.outbox.add_event(
                    OrderStatusChanged(
                        aggregate_id=order.id,
                        actor_id=actor,
                        old_status=old_status,
                        new_status=OrderStatus.REFUND_PENDING,
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Refund requested for order %s by %s",
                order.order_reference,
                actor,
                extra={"order_id": str(order.id)},
            )
            return order

    async def process_refund(self, order_id: UUID, performed_by: str) -> Order:
        """
        Refund the captured payment of a REFUND_PENDING order.

        The provider is called first, outside any transaction. Only when it
        succeeds does one transaction set the order and the payment to
        REFUNDED, write the audit row and enqueue ``RefundProcessed``.
        When an admin corrected the refund amount, that amount is refunded
        instead of the full payment.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidOrderStateError: If the order is not REFUND_PENDING
            NoSuccessfulPaymentError: If the order has no succeeded payment
            ProviderError: If the provider refund fails (nothing is committed)
        """
        provider_name = self._config.payment_provider
        with self._tracer.span(
            "ordercore.refund.process",
            {ATTR_ORDER_ID: str(order_id), ATTR_ACTOR_ID: performed_by},
        ) as span:
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id)
                if order is None:
                    raise OrderNotFoundError(order_id)
                if order.status != OrderStatus.REFUND_PENDING:
                    raise InvalidOrderStateError(
                        order.id, order.status, OrderStatus.REFUND_PENDING, "process a refund"
                    )
                payments = await tx.list_payments(order.id)

            payment = next(
                (
                    p
                    for p in payments
                    if p.provider == provider_name and p.status == PaymentStatus.SUCCEEDED
                ),
                None,
            )
            if payment is None:
                raise NoSuccessfulPaymentError(order.id, provider_name)

            amount_minor = (
                to_minor_units(order.refund_amount) if order.refund_amount is not None else None
            )
            refund = await self._provider.refund(payment.provider_ref, amount_minor)
            if span:
                span.set_attribute(ATTR_PAYMENT_PROVIDER_REF, payment.provider_ref)

            try:
                order = await self._commit_refund(
                    order_id, provider_name, payment.provider_ref, refund.refund_id, performed_by
                )
            except Exception:
                logger.error(
                    "Provider refund %s succeeded for order %s but the local commit failed; "
                    "manual reconciliation required",
                    refund.refund_id,
                    order.order_reference,
                    exc_info=True,
                    extra={
                        "order_id": str(order_id),
                        "provider_ref": payment.provider_ref,
                        "refund_id": refund.refund_id,
                    },
                )
                raise

            self._cache.invalidate(order.id)
            logger.info(
                "Order %s refunded (%s) by %s",
                order.order_reference,
                refund.refund_id,
                performed_by,
                extra={"order_id": str(order.id), "refund_id": refund.refund_id},
            )
            return order

    async def _commit_refund(
        self,
        order_id: UUID,
        provider_name: str,
        provider_ref: str,
        refund_id: str,
        performed_by: str,
    ) -> Order:
        async with self._store.transaction() as tx:
            order = await tx.get_order(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundError(order_id)
            # Another process_refund may have committed while the provider was called
            if order.status != OrderStatus.REFUND_PENDING:
                raise InvalidOrderStateError(
                    order.id, order.status, OrderStatus.REFUND_PENDING, "process a refund"
                )
            payment = await tx.get_payment_by_provider_ref(
                provider_name, provider_ref, for_update=True
            )
            if payment is None:
                raise PaymentNotFoundError(provider_name, provider_ref)

            now = utc_now()
            order.status = OrderStatus.REFUNDED
            order.refund_at = now
            order.refund_id = refund_id
            order.updated_at = now
            await tx.update_order(order)

            payment.status = PaymentStatus.REFUNDED
            payment.refunded_at = now
            await tx.update_payment(payment)

            await tx.add_audit_entry(
                AuditLogEntry(
                    entity_type=EntityType.ORDER,
                    entity_id=order.id,
                    action=AuditAction.REFUND_PROCESSED,
                    performed_by=performed_by,
                    actor_type=ActorType.ADMIN,
                    before=OrderSnapshot(status=OrderStatus.REFUND_PENDING),
                    after=OrderSnapshot(
                        status=OrderStatus.REFUNDED,
                        refund_id=refund_id,
                        refund_amount=order.refund_amount,
                    ),
                )
            )
            await tx.outbox.add_event(
                RefundProcessed(
                    aggregate_id=order.id,
                    actor_id=performed_by,
                    refund_id=refund_id,
                    amount=order.refund_amount if order.refund_amount is not None else order.total,
                )
            )
            return order

    async def update_refund_status(
        self,
        order_id: UUID,
        status: OrderStatus,
        performed_by: str,
    ) -> Order:
        """
        Set the refund status of an order (admin).

        REFUNDED triggers the provider refund through ``process_refund``.
        Any other status is stored as an audited correction, limited to the
        edges of the order graph when ``config.strict_transitions`` is set.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidStatusTransitionError: In strict mode, for a move off the graph
        """
        status = OrderStatus(status)
        if status == OrderStatus.REFUNDED:
            return await self.process_refund(order_id, performed_by)

        with self._tracer.span(
            "ordercore.refund.update_status",
            {ATTR_ORDER_ID: str(order_id), ATTR_ORDER_STATUS: status},
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)

                if self._config.strict_transitions and not is_valid_transition(
                    order.status, status
                ):
                    raise InvalidStatusTransitionError(order.id, order.status, status)

                old_status = order.status
                order.status = status
                order.updated_at = utc_now()
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.STATUS_UPDATE,
                        performed_by=performed_by,
                        actor_type=ActorType.ADMIN,
                        before=OrderSnapshot(status=old_status),
                        after=OrderSnapshot(status=status),
                    )
                )
                await tx.outbox.add_event(
                    OrderStatusChanged(
                        aggregate_id=order.id,
                        actor_id=performed_by,
                        old_status=old_status,
                        new_status=status,
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Refund status of order %s set %s -> %s by %s",
                order.order_reference,
                old_status,
                status,
                performed_by,
                extra={"order_id": str(order.id)},
            )
            return order

    async def update_refund_amount(
        self,
        order_id: UUID,
        amount: Decimal,
        performed_by: str,
    ) -> Order:
        """
        Correct the amount to refund (admin).

        Stored in ``refund_amount``; the order total is never changed.

        Raises:
            ValidationError: If the amount is negative
            OrderNotFoundError: If the order does not exist
        """
        amount = quantize_money(amount)
        if amount < 0:
            raise ValidationError(f"Refund amount must not be negative, got {amount}")

        with self._tracer.span("ordercore.refund.update_amount", {ATTR_ORDER_ID: str(order_id)}):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)

                before = OrderSnapshot(refund_amount=order.refund_amount)
                order.refund_amount = amount
                order.updated_at = utc_now()
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.AMOUNT_UPDATE,
                        performed_by=performed_by,
                        actor_type=ActorType.ADMIN,
                        before=before,
                        after=OrderSnapshot(refund_amount=amount),
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Refund amount of order %s set to %s by %s",
                order.order_reference,
                amount,
                performed_by,
                extra={"order_id": str(order.id)},
            )
            return order

    async def update_refund_reference_code(
        self,
        order_id: UUID,
        reference: str,
        performed_by: str,
    ) -> Order:
        """
        Correct the reference code of an order under refund (admin).

        Raises:
            ValidationError: If the reference is blank
            OrderNotFoundError: If the order does not exist
            DuplicateOrderReferenceError: If another order already uses the reference
        """
        reference = reference.strip()
        if not reference:
            raise ValidationError("Reference code must not be blank")

        with self._tracer.span(
            "ordercore.refund.update_reference", {ATTR_ORDER_ID: str(order_id)}
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)

                before = OrderSnapshot(order_reference=order.order_reference)
                order.order_reference = reference
                order.updated_at = utc_now()
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.REFERENCE_CODE_UPDATE,
                        performed_by=performed_by,
                        actor_type=ActorType.ADMIN,
                        before=before,
                        after=OrderSnapshot(order_reference=reference),
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Reference code of order %s changed from %s by %s",
                reference,
                before.order_reference,
                performed_by,
                extra={"order_id": str(order.id)},
            )
            return order

    async def list_refunds(self, limit: int | None = None) -> list[Order]:
        """Orders in REFUND_PENDING or REFUNDED, newest first."""
        async with self._store.transaction() as tx:
            return await tx.list_orders(statuses=REFUND_STATUSES, limit=limit)

    async def get_refund(self, order_id: UUID) -> Order:
        """
        Get an order that is in the refund workflow.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidOrderStateError: If the order is not REFUND_PENDING or REFUNDED
        """
        async with self._store.transaction() as tx:
            order = await tx.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status not in REFUND_STATUSES:
            raise InvalidOrderStateError(order.id, order.status, REFUND_STATUSES)
        return order


__all__ = ["RefundService"]
