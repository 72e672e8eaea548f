"""
Unit tests for OrderService.

Covers checkout (stock, totals, addresses, concurrency), payment intents,
payment confirmation, cancellation and the admin status transitions.
"""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from ordercore.config import OrderCoreConfig
from ordercore.events import InvoiceRequested, LowStockDetected, OrderConfirmed
from ordercore.exceptions import (
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidOrderStateError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    PaymentAlreadyCapturedError,
    PaymentNotFoundError,
    ProviderError,
)
from ordercore.services import OrderService
from ordercore.types import ActorType, AuditAction, EntityType, OrderStatus, PaymentStatus


async def stock_of(inventory, product) -> int:
    return (await inventory.get_product(product.id)).stock


async def outbox_types(store) -> list[str]:
    return [entry.event_type for entry in await store.outbox.get_pending_events()]


class TestCreateOrder:
    """Tests for OrderService.create_order."""

    @pytest.mark.asyncio
    async def test_total_and_items(self, place_order, customer_id, make_product):
        """$10 x 2 makes an order of 20.00 with one frozen line."""
        product = await make_product(price="10.00", stock=5)

        order = await place_order(customer_id, [(product, 2)])

        assert order.status == OrderStatus.PENDING
        assert order.total == Decimal("20.00")
        assert len(order.items) == 1
        assert order.items[0].price == Decimal("10.00")
        assert order.items[0].quantity == 2
        assert order.order_reference.startswith("NM-")

    @pytest.mark.asyncio
    async def test_decrements_stock_and_clears_cart(
        self, place_order, carts, inventory, customer_id, make_product
    ):
        product = await make_product(stock=5)

        await place_order(customer_id, [(product, 3)])

        assert await stock_of(inventory, product) == 2
        assert (await carts.get_cart(customer_id)).is_empty

    @pytest.mark.asyncio
    async def test_sale_price_used(self, place_order, customer_id, make_product):
        product = await make_product(price="10.00", sale_price="6.50")

        order = await place_order(customer_id, [(product, 2)])

        assert order.total == Decimal("13.00")

    @pytest.mark.asyncio
    async def test_total_immune_to_later_price_changes(
        self, place_order, orders, store, customer_id, make_product
    ):
        """Changing a product price never changes an existing order."""
        product = await make_product(price="10.00")
        order = await place_order(customer_id, [(product, 2)])

        async with store.transaction() as tx:
            stored = await tx.get_product(product.id)
            stored.price = Decimal("99.00")
            await tx.add_product(stored)

        fetched = await orders.get_order(order.id)
        assert fetched.total == Decimal("20.00")
        assert fetched.items[0].price == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_writes_creation_audit(self, place_order, audit, customer_id, make_product):
        product = await make_product(price="10.00")
        order = await place_order(customer_id, [(product, 2)])

        entries = await audit.list_entries(entity_type=EntityType.ORDER, entity_id=order.id)

        assert [e.action for e in entries] == [AuditAction.ORDER_CREATED]
        entry = entries[0]
        assert entry.actor_type == ActorType.USER
        assert entry.performed_by == str(customer_id)
        assert entry.before is None
        assert entry.after.total == Decimal("20.00")
        assert entry.after.items[0].product_id == product.id

    @pytest.mark.asyncio
    async def test_empty_cart(self, orders, customer_id):
        with pytest.raises(EmptyCartError):
            await orders.create_order(customer_id)

    @pytest.mark.asyncio
    async def test_insufficient_stock_changes_nothing(
        self, carts, orders, store, inventory, customer_id, make_product
    ):
        """A failing line rolls back every decrement of the checkout."""
        plenty = await make_product(name="Plenty", stock=10)
        scarce = await make_product(name="Scarce", stock=3)
        await carts.add_item(customer_id, plenty.id, 2)
        await carts.add_item(customer_id, scarce.id, 3)
        await inventory.set_stock(scarce.id, 1, "admin:1")

        with pytest.raises(InsufficientStockError) as exc_info:
            await orders.create_order(customer_id)

        assert exc_info.value.product_id == scarce.id
        assert await stock_of(inventory, plenty) == 10
        assert await stock_of(inventory, scarce) == 1
        assert await orders.list_customer_orders(customer_id) == []
        assert (await carts.get_cart(customer_id)).item_count == 5

    @pytest.mark.asyncio
    async def test_address_must_belong_to_customer(
        self, place_order, make_address, customer_id, other_customer_id, make_product
    ):
        product = await make_product()
        foreign = await make_address(other_customer_id)

        with pytest.raises(InvalidAddressError):
            await place_order(customer_id, [(product, 1)], shipping_address_id=foreign.id)

    @pytest.mark.asyncio
    async def test_unknown_address(self, place_order, customer_id, make_product):
        product = await make_product()
        with pytest.raises(InvalidAddressError):
            await place_order(customer_id, [(product, 1)], billing_address_id=uuid4())

    @pytest.mark.asyncio
    async def test_own_addresses_recorded(self, place_order, make_address, customer_id, make_product):
        product = await make_product()
        address = await make_address(customer_id)

        order = await place_order(
            customer_id,
            [(product, 1)],
            shipping_address_id=address.id,
            billing_address_id=address.id,
        )

        assert order.shipping_address_id == address.id
        assert order.billing_address_id == address.id

    @pytest.mark.asyncio
    async def test_low_stock_event(self, place_order, store, customer_id, make_product):
        product = await make_product(stock=5, low_stock_threshold=2)

        await place_order(customer_id, [(product, 3)])

        pending = await store.outbox.get_pending_events()
        assert [e.event_type for e in pending] == ["LowStockDetected"]
        event = LowStockDetected.model_validate_json(pending[0].event_data)
        assert event.aggregate_id == product.id
        assert event.stock == 2

    @pytest.mark.asyncio
    async def test_concurrent_checkouts_never_oversell(
        self, carts, orders, inventory, make_product
    ):
        """N customers race for N-1 units: N-1 orders succeed, stock ends at zero."""
        customers = [uuid4() for _ in range(5)]
        product = await make_product(stock=len(customers))
        for customer in customers:
            await carts.add_item(customer, product.id, 1)
        await inventory.set_stock(product.id, len(customers) - 1, "admin:1")

        results = await asyncio.gather(
            *(orders.create_order(customer) for customer in customers),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientStockError)
        assert await stock_of(inventory, product) == 0

    @pytest.mark.asyncio
    async def test_reference_collision_retried(
        self, carts, store, provider, config, customer_id, make_product, monkeypatch
    ):
        """A taken order reference is regenerated."""
        product = await make_product(stock=5)
        service = OrderService(store, provider, config=config, enable_tracing=False)
        references = iter(["NM-20240101-AAAAAA", "NM-20240101-AAAAAA", "NM-20240101-BBBBBB"])
        monkeypatch.setattr(
            "ordercore.services.orders.generate_order_reference",
            lambda prefix: next(references),
        )

        await carts.add_item(customer_id, product.id, 1)
        first = await service.create_order(customer_id)
        await carts.add_item(customer_id, product.id, 1)
        second = await service.create_order(customer_id)

        assert first.order_reference == "NM-20240101-AAAAAA"
        assert second.order_reference == "NM-20240101-BBBBBB"


class TestPaymentIntent:
    """Tests for create_payment_intent and checkout."""

    @pytest.mark.asyncio
    async def test_records_pending_payment(self, place_order, orders, provider, customer_id, make_product):
        product = await make_product(price="10.00")
        order = await place_order(customer_id, [(product, 2)])

        intent = await orders.create_payment_intent(order.id)

        assert intent.payment_intent_id == "pi_test_000001"
        assert intent.client_secret == "pi_test_000001_secret"
        assert provider.calls[0].amount_minor_units == 2000
        assert provider.calls[0].currency == "usd"
        assert provider.calls[0].metadata == {
            "order_id": str(order.id),
            "order_reference": order.order_reference,
        }
        payments = await orders.list_payments(order.id)
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.PENDING
        assert payments[0].provider == "STRIPE"
        assert payments[0].amount == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_requires_pending_order(self, place_order, orders, pay_order, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        await pay_order(order)

        with pytest.raises(InvalidOrderStateError):
            await orders.create_payment_intent(order.id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            await orders.create_payment_intent(uuid4())

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_order_pending(
        self, place_order, orders, provider, customer_id, make_product
    ):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        provider.fail_next("create_intent", "card network down")

        with pytest.raises(ProviderError):
            await orders.create_payment_intent(order.id)

        assert (await orders.get_order(order.id)).status == OrderStatus.PENDING
        assert await orders.list_payments(order.id) == []

    @pytest.mark.asyncio
    async def test_checkout(self, carts, orders, customer_id, make_product):
        product = await make_product(price="5.00")
        await carts.add_item(customer_id, product.id, 3)

        result = await orders.checkout(customer_id)

        order = await orders.get_order(result.order_id)
        assert order.total == Decimal("15.00")
        assert result.payment_intent_id == "pi_test_000001"
        assert result.client_secret.startswith(result.payment_intent_id)


class TestMarkPaymentPaid:
    """Tests for mark_payment_paid."""

    @pytest.mark.asyncio
    async def test_confirms_order(self, place_order, orders, audit, store, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        intent = await orders.create_payment_intent(order.id)

        payment = await orders.mark_payment_paid(intent.payment_intent_id, provider_event_id="evt_1")

        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.paid_at is not None
        paid = await orders.get_order(order.id)
        assert paid.status == OrderStatus.PROCESSING
        assert paid.paid_at is not None

        entries = await audit.list_entries(entity_type=EntityType.PAYMENT, entity_id=payment.id)
        assert [e.action for e in entries] == [AuditAction.MARK_PAYMENT_PAID]
        assert entries[0].actor_type == ActorType.SYSTEM
        assert entries[0].before.status == PaymentStatus.PENDING
        assert entries[0].after.status == PaymentStatus.SUCCEEDED

        assert await outbox_types(store) == ["OrderConfirmed", "InvoiceRequested"]
        assert await orders.webhook_event_seen("evt_1")

    @pytest.mark.asyncio
    async def test_confirmation_events_carry_order(self, place_order, orders, store, customer_id, make_product):
        product = await make_product(price="10.00")
        order = await place_order(customer_id, [(product, 2)])
        await orders.mark_payment_paid((await orders.create_payment_intent(order.id)).payment_intent_id)

        confirmed, invoice = await store.outbox.get_pending_events()

        event = OrderConfirmed.model_validate_json(confirmed.event_data)
        assert event.aggregate_id == order.id
        assert event.customer_id == customer_id
        assert event.total == Decimal("20.00")
        assert InvoiceRequested.model_validate_json(invoice.event_data).order_reference == (
            order.order_reference
        )

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self, place_order, orders, audit, store, customer_id, make_product):
        """Marking a paid payment again writes no audit row and no events."""
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        intent_id = await pay_order_once(orders, order)

        again = await orders.mark_payment_paid(intent_id)

        assert again.status == PaymentStatus.SUCCEEDED
        entries = await audit.list_entries(entity_type=EntityType.PAYMENT)
        assert len(entries) == 1
        assert await outbox_types(store) == ["OrderConfirmed", "InvoiceRequested"]

    @pytest.mark.asyncio
    async def test_unknown_reference(self, orders):
        with pytest.raises(PaymentNotFoundError):
            await orders.mark_payment_paid("pi_missing")

    @pytest.mark.asyncio
    async def test_second_payment_cannot_capture(self, place_order, orders, customer_id, make_product):
        """Only one payment of an order ever reaches SUCCEEDED."""
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        first = await orders.create_payment_intent(order.id)
        second = await orders.create_payment_intent(order.id)
        await orders.mark_payment_paid(first.payment_intent_id)

        with pytest.raises(PaymentAlreadyCapturedError):
            await orders.mark_payment_paid(second.payment_intent_id)

        statuses = {p.provider_ref: p.status for p in await orders.list_payments(order.id)}
        assert statuses == {
            first.payment_intent_id: PaymentStatus.SUCCEEDED,
            second.payment_intent_id: PaymentStatus.PENDING,
        }


async def pay_order_once(orders, order) -> str:
    intent = await orders.create_payment_intent(order.id)
    await orders.mark_payment_paid(intent.payment_intent_id)
    return intent.payment_intent_id


class TestCancelOrder:
    """Tests for cancel_order."""

    @pytest.mark.asyncio
    async def test_restores_stock(self, place_order, orders, inventory, audit, customer_id, make_product):
        first = await make_product(name="A", stock=5)
        second = await make_product(name="B", stock=4)
        order = await place_order(customer_id, [(first, 2), (second, 4)])

        cancelled = await orders.cancel_order(order.id, customer_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert await stock_of(inventory, first) == 5
        assert await stock_of(inventory, second) == 4
        actions = [e.action for e in await audit.list_entries(entity_id=order.id)]
        assert actions == [AuditAction.ORDER_CANCELLED, AuditAction.ORDER_CREATED]

    @pytest.mark.asyncio
    async def test_only_pending_orders(
        self, place_order, orders, pay_order, inventory, customer_id, make_product
    ):
        """A paid order cannot be cancelled and nothing changes."""
        product = await make_product(stock=5)
        order = await place_order(customer_id, [(product, 2)])
        await pay_order(order)

        with pytest.raises(InvalidOrderStateError):
            await orders.cancel_order(order.id, customer_id)

        assert (await orders.get_order(order.id)).status == OrderStatus.PROCESSING
        assert await stock_of(inventory, product) == 3

    @pytest.mark.asyncio
    async def test_only_owner(self, place_order, orders, customer_id, other_customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])

        with pytest.raises(ForbiddenError):
            await orders.cancel_order(order.id, other_customer_id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, orders, customer_id):
        with pytest.raises(OrderNotFoundError):
            await orders.cancel_order(uuid4(), customer_id)


class TestAdminTransitions:
    """Tests for update_order_status and update_shipping_info."""

    @pytest.mark.asyncio
    async def test_update_status(self, place_order, orders, pay_order, audit, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        await pay_order(order)

        updated = await orders.update_order_status(order.id, OrderStatus.SHIPPED, "admin:7")

        assert updated.status == OrderStatus.SHIPPED
        assert updated.shipped_at is not None
        entry = (await audit.list_entries(entity_id=order.id))[0]
        assert entry.action == AuditAction.STATUS_UPDATE
        assert entry.performed_by == "admin:7"
        assert entry.actor_type == ActorType.ADMIN
        assert entry.before.status == OrderStatus.PROCESSING
        assert entry.after.status == OrderStatus.SHIPPED

    @pytest.mark.asyncio
    async def test_lenient_by_default(self, place_order, orders, customer_id, make_product):
        """Without strict transitions any status can be set."""
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])

        updated = await orders.update_order_status(order.id, OrderStatus.DELIVERED, "admin:1")

        assert updated.status == OrderStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_strict_transitions(self, place_order, store, provider, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        strict = OrderService(
            store, provider, config=OrderCoreConfig(strict_transitions=True), enable_tracing=False
        )

        with pytest.raises(InvalidStatusTransitionError):
            await strict.update_order_status(order.id, OrderStatus.DELIVERED, "admin:1")

        updated = await strict.update_order_status(order.id, OrderStatus.PROCESSING, "admin:1")
        assert updated.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_update_shipping_info(
        self, place_order, orders, pay_order, store, audit, customer_id, make_product
    ):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        await pay_order(order)

        shipped = await orders.update_shipping_info(
            order.id, "1Z999", "UPS", performed_by="admin:2"
        )

        assert shipped.status == OrderStatus.SHIPPED
        assert shipped.tracking_number == "1Z999"
        assert shipped.shipping_carrier == "UPS"
        assert shipped.shipped_at is not None
        assert (await outbox_types(store))[-1] == "OrderShipped"
        entry = (await audit.list_entries(entity_id=order.id))[0]
        assert entry.action == AuditAction.SHIPPING_UPDATE
        assert entry.after.tracking_number == "1Z999"

    @pytest.mark.asyncio
    async def test_unknown_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            await orders.update_order_status(uuid4(), OrderStatus.SHIPPED, "admin:1")


class TestQueries:
    """Tests for the read operations."""

    @pytest.mark.asyncio
    async def test_get_order_cached_copy(self, place_order, orders, customer_id, make_product):
        """Callers get copies; mutating one does not change the cache."""
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])

        first = await orders.get_order(order.id)
        first.status = OrderStatus.SHIPPED
        second = await orders.get_order(order.id)

        assert second.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_writes_invalidate_cache(self, place_order, orders, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        await orders.get_order(order.id)

        await orders.cancel_order(order.id, customer_id)

        assert (await orders.get_order(order.id)).status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_get_customer_order(
        self, place_order, orders, customer_id, other_customer_id, make_product
    ):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])

        assert (await orders.get_customer_order(order.id, customer_id)).id == order.id
        with pytest.raises(ForbiddenError):
            await orders.get_customer_order(order.id, other_customer_id)

    @pytest.mark.asyncio
    async def test_get_unknown_order(self, orders):
        with pytest.raises(OrderNotFoundError):
            await orders.get_order(uuid4())

    @pytest.mark.asyncio
    async def test_list_orders(
        self, place_order, orders, customer_id, other_customer_id, make_product
    ):
        product = await make_product(stock=10)
        mine = await place_order(customer_id, [(product, 1)])
        theirs = await place_order(other_customer_id, [(product, 1)])
        await orders.cancel_order(theirs.id, other_customer_id)

        assert [o.id for o in await orders.list_customer_orders(customer_id)] == [mine.id]
        assert len(await orders.list_orders()) == 2
        cancelled = await orders.list_orders(statuses=[OrderStatus.CANCELLED])
        assert [o.id for o in cancelled] == [theirs.id]
        assert len(await orders.list_orders(limit=1)) == 1
