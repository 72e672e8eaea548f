"""
Order state machine.

OrderService turns a customer's cart into an immutable order, issues
payment intents, applies provider payment confirmations and drives the
admin status, shipping and cancellation transitions.

Every state change runs in one store transaction together with its audit
row and its outbox events, so a failure at any step leaves no partial
order, no partial stock change and no orphaned notification.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from ordercore.audit.snapshots import (
    AuditLogEntry,
    OrderLineSnapshot,
    OrderSnapshot,
    PaymentSnapshot,
)
from ordercore.cache import Cache, TTLCache
from ordercore.config import OrderCoreConfig
from ordercore.events.orders import (
    InvoiceRequested,
    LowStockDetected,
    OrderConfirmed,
    OrderShipped,
    OrderStatusChanged,
)
from ordercore.exceptions import (
    DuplicateOrderReferenceError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidOrderStateError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    PaymentAlreadyCapturedError,
    PaymentNotFoundError,
    ProductNotFoundError,
)
from ordercore.models import Order, OrderItem, Payment, Product, WebhookEventRecord, utc_now
from ordercore.observability import (
    ATTR_CUSTOMER_ID,
    ATTR_ITEM_COUNT,
    ATTR_ORDER_ID,
    ATTR_ORDER_PREVIOUS_STATUS,
    ATTR_ORDER_REFERENCE,
    ATTR_ORDER_STATUS,
    ATTR_PAYMENT_AMOUNT_MINOR,
    ATTR_PAYMENT_PROVIDER,
    ATTR_PAYMENT_PROVIDER_REF,
    ATTR_WEBHOOK_EVENT_ID,
    Tracer,
    create_tracer,
)
from ordercore.payments.provider import PAYMENT_SUCCEEDED_EVENT, PaymentProvider
from ordercore.pricing import (
    effective_price,
    generate_order_reference,
    order_total,
    to_minor_units,
)
from ordercore.stores.interface import OrderStore, StoreTransaction
from ordercore.types import (
    ActorType,
    AuditAction,
    EntityType,
    OrderStatus,
    PaymentStatus,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# A payment in one of these states has already moved money
_CAPTURED_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED})


@dataclass(frozen=True)
class PaymentIntentResult:
    """What the customer needs to complete payment."""

    client_secret: str
    payment_intent_id: str


@dataclass(frozen=True)
class CheckoutResult:
    """Checkout response: the new order and its payment intent."""

    order_id: UUID
    client_secret: str
    payment_intent_id: str


class OrderService:
    """
    Order lifecycle operations.

    Args:
        store: Order store providing transactions
        provider: Payment provider used for payment intents
        config: Service configuration (defaults to ``OrderCoreConfig()``)
        cache: Cache for order reads (defaults to a TTLCache honoring
            ``config.order_cache_ttl``)
        tracer: Optional tracer
        enable_tracing: Whether to enable OpenTelemetry tracing

    Example:
        >>> orders = OrderService(store, InMemoryPaymentProvider())
        >>> result = await orders.checkout(customer_id, shipping_address_id=address.id)
        >>> await orders.mark_payment_paid(result.payment_intent_id)
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
        self._enable_tracing = self._tracer.enabled

    @property
    def config(self) -> OrderCoreConfig:
        return self._config

    @property
    def provider_name(self) -> str:
        return self._config.payment_provider

    # -- checkout ---------------------------------------------------------

    async def create_order(
        self,
        customer_id: UUID,
        shipping_address_id: UUID | None = None,
        billing_address_id: UUID | None = None,
    ) -> Order:
        """
        Convert the customer's cart into a PENDING order.

        Stock is checked and decremented in the same transaction that
        creates the order and empties the cart. A collision on the
        generated order reference retries the whole transaction up to
        ``config.reference_attempts`` times.

        Raises:
            InvalidAddressError: If an address is missing or not the customer's
            EmptyCartError: If the cart has no items
            InsufficientStockError: If any line exceeds the available stock
        """
        with self._tracer.span(
            "ordercore.order.create",
            {ATTR_CUSTOMER_ID: str(customer_id)},
        ) as span:
            await self._check_addresses(customer_id, shipping_address_id, billing_address_id)

            attempts = self._config.reference_attempts
            for attempt in range(1, attempts + 1):
                reference = generate_order_reference(self._config.order_reference_prefix)
                try:
                    async with self._store.transaction() as tx:
                        order = await self._create_order_in(
                            tx, customer_id, reference, shipping_address_id, billing_address_id
                        )
                except DuplicateOrderReferenceError:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "Order reference %s already taken, retrying (attempt %d/%d)",
                        reference,
                        attempt,
                        attempts,
                    )
                    continue

                if span:
                    span.set_attribute(ATTR_ORDER_ID, str(order.id))
                    span.set_attribute(ATTR_ORDER_REFERENCE, order.order_reference)
                    span.set_attribute(ATTR_ITEM_COUNT, len(order.items))
                logger.info(
                    "Created order %s for customer %s: total %s",
                    order.order_reference,
                    customer_id,
                    order.total,
                    extra={"order_id": str(order.id), "customer_id": str(customer_id)},
                )
                return order

        raise AssertionError("unreachable")  # pragma: no cover

    async def _check_addresses(self, customer_id: UUID, *address_ids: UUID | None) -> None:
        wanted = [a for a in address_ids if a is not None]
        if not wanted:
            return
        async with self._store.transaction() as tx:
            for address_id in wanted:
                address = await tx.get_address(address_id)
                if address is None or address.customer_id != customer_id:
                    raise InvalidAddressError(address_id, customer_id)

    async def _create_order_in(
        self,
        tx: StoreTransaction,
        customer_id: UUID,
        reference: str,
        shipping_address_id: UUID | None,
        billing_address_id: UUID | None,
    ) -> Order:
        cart = await tx.get_cart(customer_id)
        cart_items = await tx.list_cart_items(cart.id) if cart is not None else []
        if cart is None or not cart_items:
            raise EmptyCartError(customer_id)

        # Lock rows in product id order so concurrent checkouts cannot deadlock
        cart_items.sort(key=lambda item: item.product_id)
        products: dict[UUID, Product] = {}
        for item in cart_items:
            product = await tx.get_product(item.product_id, for_update=True)
            if product is None:
                raise ProductNotFoundError(item.product_id)
            if product.stock < item.quantity:
                raise InsufficientStockError(
                    product.id, product.stock, item.quantity, product.name
                )
            products[product.id] = product

        order_id = uuid4()
        items = [
            OrderItem(
                order_id=order_id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=effective_price(products[item.product_id]),
            )
            for item in cart_items
        ]
        order = Order(
            id=order_id,
            customer_id=customer_id,
            order_reference=reference,
            total=order_total((item.price, item.quantity) for item in items),
            currency=self._config.currency,
            shipping_address_id=shipping_address_id,
            billing_address_id=billing_address_id,
            items=items,
        )
        await tx.add_order(order)

        low_stock: list[tuple[Product, int]] = []
        for item in items:
            remaining = await tx.decrement_stock(item.product_id, item.quantity)
            product = products[item.product_id]
            if remaining <= product.low_stock_threshold:
                low_stock.append((product, remaining))

        await tx.clear_cart(cart.id)

        await tx.add_audit_entry(
            AuditLogEntry(
                entity_type=EntityType.ORDER,
                entity_id=order.id,
                action=AuditAction.ORDER_CREATED,
                performed_by=str(customer_id),
                actor_type=ActorType.USER,
                after=OrderSnapshot(
                    status=order.status,
                    order_reference=order.order_reference,
                    total=order.total,
                    items=[
                        OrderLineSnapshot(
                            product_id=item.product_id,
                            quantity=item.quantity,
                            price=item.price,
                        )
                        for item in items
                    ],
                ),
            )
        )

        for product, remaining in low_stock:
            await tx.outbox.add_event(
                LowStockDetected(
                    aggregate_id=product.id,
                    product_name=product.name,
                    stock=remaining,
                    low_stock_threshold=product.low_stock_threshold,
                )
            )
            logger.info(
                "Product %s is low on stock (%d left)",
                product.name,
                remaining,
                extra={"product_id": str(product.id)},
            )

        return order

    async def create_payment_intent(self, order_id: UUID) -> PaymentIntentResult:
        """
        Create a provider payment intent for a PENDING order.

        Each call records a new PENDING payment; only one payment of an
        order can ever reach SUCCEEDED.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidOrderStateError: If the order is not PENDING
            ProviderError: If the provider call fails (the order stays PENDING)
        """
        with self._tracer.span(
            "ordercore.order.create_payment_intent",
            {ATTR_ORDER_ID: str(order_id), ATTR_PAYMENT_PROVIDER: self.provider_name},
        ) as span:
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.status != OrderStatus.PENDING:
                raise InvalidOrderStateError(
                    order.id, order.status, OrderStatus.PENDING, "create a payment intent"
                )

            amount_minor = to_minor_units(order.total)
            intent = await self._provider.create_intent(
                amount_minor,
                order.currency,
                {"order_id": str(order.id), "order_reference": order.order_reference},
            )

            async with self._store.transaction() as tx:
                await tx.add_payment(
                    Payment(
                        order_id=order.id,
                        provider=self.provider_name,
                        provider_ref=intent.id,
                        amount=order.total,
                        currency=order.currency,
                    )
                )

            if span:
                span.set_attribute(ATTR_PAYMENT_PROVIDER_REF, intent.id)
                span.set_attribute(ATTR_PAYMENT_AMOUNT_MINOR, amount_minor)
            logger.info(
                "Created payment intent %s for order %s",
                intent.id,
                order.order_reference,
                extra={"order_id": str(order.id), "provider_ref": intent.id},
            )
            return PaymentIntentResult(
                client_secret=intent.client_secret,
                payment_intent_id=intent.id,
            )

    async def checkout(
        self,
        customer_id: UUID,
        shipping_address_id: UUID | None = None,
        billing_address_id: UUID | None = None,
    ) -> CheckoutResult:
        """
        Create an order from the cart and a payment intent for it.

        If the provider call fails the order exists and stays PENDING; the
        customer can retry with ``create_payment_intent``.
        """
        order = await self.create_order(customer_id, shipping_address_id, billing_address_id)
        intent = await self.create_payment_intent(order.id)
        return CheckoutResult(
            order_id=order.id,
            client_secret=intent.client_secret,
            payment_intent_id=intent.payment_intent_id,
        )

    # -- payment reconciliation -------------------------------------------

    async def mark_payment_paid(
        self,
        provider_ref: str,
        provider_event_id: str | None = None,
        event_type: str = PAYMENT_SUCCEEDED_EVENT,
    ) -> Payment:
        """
        Record a successful payment and move its order to PROCESSING.

        One transaction updates the payment and the order, writes the audit
        row, records the provider event id (when given) and enqueues the
        confirmation and invoice events. Calling it again for a payment that
        already SUCCEEDED, or was refunded since, changes nothing.

        Args:
            provider_ref: Provider payment intent id
            provider_event_id: Webhook event id to record for deduplication
            event_type: Webhook event type stored with the event record

        Returns:
            The payment as stored after the call

        Raises:
            PaymentNotFoundError: If no payment has this provider reference
            PaymentAlreadyCapturedError: If another payment of the order succeeded
            DuplicateWebhookEventError: If the event id was already recorded
        """
        with self._tracer.span(
            "ordercore.payment.mark_paid",
            {
                ATTR_PAYMENT_PROVIDER: self.provider_name,
                ATTR_PAYMENT_PROVIDER_REF: provider_ref,
                ATTR_WEBHOOK_EVENT_ID: provider_event_id or "",
            },
        ) as span:
            async with self._store.transaction() as tx:
                payment = await tx.get_payment_by_provider_ref(
                    self.provider_name, provider_ref, for_update=True
                )
                if payment is None:
                    raise PaymentNotFoundError(self.provider_name, provider_ref)

                if provider_event_id is not None:
                    await tx.add_webhook_event(
                        WebhookEventRecord(
                            provider=self.provider_name,
                            event_id=provider_event_id,
                            event_type=event_type,
                            provider_ref=provider_ref,
                        )
                    )

                if payment.status in _CAPTURED_STATUSES:
                    logger.info(
                        "Payment %s already %s; nothing to do",
                        provider_ref,
                        payment.status,
                        extra={"provider_ref": provider_ref, "order_id": str(payment.order_id)},
                    )
                    return payment

                order = await tx.get_order(payment.order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(payment.order_id)

                for other in await tx.list_payments(order.id):
                    if other.id != payment.id and other.status in _CAPTURED_STATUSES:
                        raise PaymentAlreadyCapturedError(
                            order.id, other.provider_ref, provider_ref
                        )

                if order.status != OrderStatus.PENDING:
                    logger.warning(
                        "Payment %s succeeded for order %s in status %s",
                        provider_ref,
                        order.order_reference,
                        order.status,
                        extra={"provider_ref": provider_ref, "order_id": str(order.id)},
                    )

                now = utc_now()
                before = PaymentSnapshot(status=payment.status, provider_ref=provider_ref)
                payment.status = PaymentStatus.SUCCEEDED
                payment.paid_at = now
                await tx.update_payment(payment)

                previous_status = order.status
                order.status = OrderStatus.PROCESSING
                order.paid_at = now
                order.updated_at = now
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.PAYMENT,
                        entity_id=payment.id,
                        action=AuditAction.MARK_PAYMENT_PAID,
                        performed_by=SYSTEM_ACTOR,
                        actor_type=ActorType.SYSTEM,
                        before=before,
                        after=PaymentSnapshot(
                            status=payment.status,
                            provider_ref=provider_ref,
                            paid_at=now,
                        ),
                    )
                )
                await tx.outbox.add_event(
                    OrderConfirmed(
                        aggregate_id=order.id,
                        actor_id=SYSTEM_ACTOR,
                        order_reference=order.order_reference,
                        customer_id=order.customer_id,
                        total=order.total,
                    )
                )
                await tx.outbox.add_event(
                    InvoiceRequested(
                        aggregate_id=order.id,
                        actor_id=SYSTEM_ACTOR,
                        order_reference=order.order_reference,
                    )
                )

            self._cache.invalidate(order.id)
            if span:
                span.set_attribute(ATTR_ORDER_ID, str(order.id))
                span.set_attribute(ATTR_ORDER_PREVIOUS_STATUS, previous_status)
            logger.info(
                "Payment %s succeeded; order %s is now PROCESSING",
                provider_ref,
                order.order_reference,
                extra={"provider_ref": provider_ref, "order_id": str(order.id)},
            )
            return payment

    async def webhook_event_seen(self, provider_event_id: str) -> bool:
        """Return True if a webhook event id was already applied."""
        async with self._store.transaction() as tx:
            record = await tx.get_webhook_event(self.provider_name, provider_event_id)
        return record is not None

    # -- admin transitions ------------------------------------------------

    def _check_transition(self, order: Order, new_status: OrderStatus) -> None:
        if self._config.strict_transitions and not is_valid_transition(order.status, new_status):
            raise InvalidStatusTransitionError(order.id, order.status, new_status)

    async def update_order_status(
        self,
        order_id: UUID,
        new_status: OrderStatus,
        performed_by: str,
    ) -> Order:
        """
        Set an order's status (admin).

        Any status is accepted unless ``config.strict_transitions`` is set,
        in which case only edges of the order graph are allowed.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidStatusTransitionError: In strict mode, for a move off the graph
        """
        new_status = OrderStatus(new_status)
        with self._tracer.span(
            "ordercore.order.update_status",
            {ATTR_ORDER_ID: str(order_id), ATTR_ORDER_STATUS: new_status},
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)
                self._check_transition(order, new_status)

                old_status = order.status
                now = utc_now()
                order.status = new_status
                order.updated_at = now
                if new_status == OrderStatus.SHIPPED and order.shipped_at is None:
                    order.shipped_at = now
                elif new_status == OrderStatus.CANCELLED and order.cancelled_at is None:
                    order.cancelled_at = now
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.STATUS_UPDATE,
                        performed_by=performed_by,
                        actor_type=ActorType.ADMIN,
                        before=OrderSnapshot(status=old_status),
                        after=OrderSnapshot(status=new_status),
                    )
                )
                await tx.outbox.add_event(
                    OrderStatusChanged(
                        aggregate_id=order.id,
                        actor_id=performed_by,
                        old_status=old_status,
                        new_status=new_status,
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Order %s status %s -> %s by %s",
                order.order_reference,
                old_status,
                new_status,
                performed_by,
                extra={"order_id": str(order.id)},
            )
            return order

    async def cancel_order(self, order_id: UUID, customer_id: UUID) -> Order:
        """
        Cancel a PENDING order on behalf of its owner and restore its stock.

        Raises:
            OrderNotFoundError: If the order does not exist
            ForbiddenError: If the customer does not own the order
            InvalidOrderStateError: If the order is not PENDING
        """
        with self._tracer.span(
            "ordercore.order.cancel",
            {ATTR_ORDER_ID: str(order_id), ATTR_CUSTOMER_ID: str(customer_id)},
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)
                if order.customer_id != customer_id:
                    raise ForbiddenError(f"Order {order_id} does not belong to customer {customer_id}")
                if order.status != OrderStatus.PENDING:
                    raise InvalidOrderStateError(
                        order.id, order.status, OrderStatus.PENDING, "cancel"
                    )

                for item in sorted(order.items, key=lambda i: i.product_id):
                    await tx.increment_stock(item.product_id, item.quantity)

                now = utc_now()
                order.status = OrderStatus.CANCELLED
                order.cancelled_at = now
                order.updated_at = now
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.ORDER_CANCELLED,
                        performed_by=str(customer_id),
                        actor_type=ActorType.USER,
                        before=OrderSnapshot(status=OrderStatus.PENDING),
                        after=OrderSnapshot(status=OrderStatus.CANCELLED),
                    )
                )
                await tx.outbox.add_event(
                    OrderStatusChanged(
                        aggregate_id=order.id,
                        actor_id=str(customer_id),
                        old_status=OrderStatus.PENDING,
                        new_status=OrderStatus.CANCELLED,
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Order %s cancelled by customer %s",
                order.order_reference,
                customer_id,
                extra={"order_id": str(order.id)},
            )
            return order

    async def update_shipping_info(
        self,
        order_id: UUID,
        tracking_number: str,
        shipping_carrier: str,
        status: OrderStatus = OrderStatus.SHIPPED,
        *,
        performed_by: str,
    ) -> Order:
        """
        Attach tracking information to an order (admin).

        Sets ``shipped_at`` and the status (SHIPPED by default) and enqueues
        an ``OrderShipped`` event for the shipping notification.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidStatusTransitionError: In strict mode, for a move off the graph
        """
        status = OrderStatus(status)
        with self._tracer.span(
            "ordercore.order.update_shipping",
            {ATTR_ORDER_ID: str(order_id), ATTR_ORDER_STATUS: status},
        ):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(order_id)
                if order.status != status:
                    self._check_transition(order, status)

                before = OrderSnapshot(
                    status=order.status,
                    tracking_number=order.tracking_number,
                    shipping_carrier=order.shipping_carrier,
                )
                now = utc_now()
                order.tracking_number = tracking_number
                order.shipping_carrier = shipping_carrier
                order.status = status
                order.shipped_at = now
                order.updated_at = now
                await tx.update_order(order)

                await tx.add_audit_entry(
                    AuditLogEntry(
                        entity_type=EntityType.ORDER,
                        entity_id=order.id,
                        action=AuditAction.SHIPPING_UPDATE,
                        performed_by=performed_by,
                        actor_type=ActorType.ADMIN,
                        before=before,
                        after=OrderSnapshot(
                            status=status,
                            tracking_number=tracking_number,
                            shipping_carrier=shipping_carrier,
                        ),
                    )
                )
                await tx.outbox.add_event(
                    OrderShipped(
                        aggregate_id=order.id,
                        actor_id=performed_by,
                        tracking_number=tracking_number,
                        shipping_carrier=shipping_carrier,
                    )
                )

            self._cache.invalidate(order.id)
            logger.info(
                "Order %s shipped with %s %s",
                order.order_reference,
                shipping_carrier,
                tracking_number,
                extra={"order_id": str(order.id)},
            )
            return order

    # -- queries ----------------------------------------------------------

    async def get_order(self, order_id: UUID) -> Order:
        """
        Get an order with its items; served from the cache when fresh.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        cached = self._cache.get(order_id)
        if cached is not None:
            return copy.deepcopy(cached)

        with self._tracer.span("ordercore.order.get", {ATTR_ORDER_ID: str(order_id)}):
            async with self._store.transaction() as tx:
                order = await tx.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            self._cache.set(order_id, copy.deepcopy(order))
            return order

    async def get_customer_order(self, order_id: UUID, customer_id: UUID) -> Order:
        """
        Get an order on behalf of a customer.

        Raises:
            OrderNotFoundError: If the order does not exist
            ForbiddenError: If the customer does not own the order
        """
        order = await self.get_order(order_id)
        if order.customer_id != customer_id:
            raise ForbiddenError(f"Order {order_id} does not belong to customer {customer_id}")
        return order

    async def list_customer_orders(self, customer_id: UUID, limit: int | None = None) -> list[Order]:
        """A customer's orders, newest first."""
        async with self._store.transaction() as tx:
            return await tx.list_orders(customer_id=customer_id, limit=limit)

    async def list_orders(
        self,
        limit: int | None = None,
        statuses: list[OrderStatus] | None = None,
    ) -> list[Order]:
        """All orders newest first, optionally filtered by status (admin)."""
        async with self._store.transaction() as tx:
            return await tx.list_orders(statuses=statuses, limit=limit)

    async def list_payments(self, order_id: UUID) -> list[Payment]:
        """Payments of an order, oldest first."""
        async with self._store.transaction() as tx:
            return await tx.list_payments(order_id)


__all__ = ["CheckoutResult", "OrderService", "PaymentIntentResult"]
