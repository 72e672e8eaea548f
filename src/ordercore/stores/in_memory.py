"""
In-memory order store.

Holds every table in dictionaries and is intended for tests and
single-process development. Transactions are serialized by an
``asyncio.Lock`` and run against a deep copy of the state; the copy
replaces the live state only when the transaction commits, so a raised
exception leaves nothing behind.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from uuid import UUID

from ordercore.audit.snapshots import AuditLogEntry
from ordercore.events.base import DomainEvent
from ordercore.exceptions import (
    DuplicateOrderReferenceError,
    DuplicatePaymentError,
    DuplicateWebhookEventError,
    InsufficientStockError,
    OutboxUnavailableError,
    ProductNotFoundError,
)
from ordercore.models import (
    Address,
    Cart,
    CartItem,
    Order,
    Payment,
    Product,
    WebhookEventRecord,
    utc_now,
)
from ordercore.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    Tracer,
    create_tracer,
)
from ordercore.repositories.outbox import (
    InMemoryOutboxRepository,
    OutboxEntry,
    OutboxRepository,
    OutboxStats,
    build_entry,
)
from ordercore.stores.interface import OrderStore, StoreTransaction
from ordercore.types import EntityType, OrderStatus

logger = logging.getLogger(__name__)


@dataclass
class _State:
    products: dict[UUID, Product] = field(default_factory=dict)
    addresses: dict[UUID, Address] = field(default_factory=dict)
    carts: dict[UUID, Cart] = field(default_factory=dict)
    cart_items: dict[tuple[UUID, UUID], CartItem] = field(default_factory=dict)
    orders: dict[UUID, Order] = field(default_factory=dict)
    payments: dict[tuple[str, str], Payment] = field(default_factory=dict)
    audit_entries: list[AuditLogEntry] = field(default_factory=list)
    webhook_events: dict[tuple[str, str], WebhookEventRecord] = field(default_factory=dict)


class _StagedOutbox:
    """Collects events added in a transaction until it commits."""

    def __init__(self) -> None:
        self.entries: list[OutboxEntry] = []

    async def add_event(self, event: DomainEvent) -> UUID:
        entry = build_entry(event)
        self.entries.append(entry)
        return entry.id

    async def get_pending_events(self, limit: int = 100) -> list[OutboxEntry]:
        return self.entries[:limit]

    async def mark_published(self, outbox_id: UUID) -> None:
        raise OutboxUnavailableError("mark_published")

    async def mark_failed(self, outbox_id: UUID, error: str) -> None:
        raise OutboxUnavailableError("mark_failed")

    async def increment_retry(self, outbox_id: UUID, error: str | None = None) -> None:
        raise OutboxUnavailableError("increment_retry")

    async def cleanup_published(self, days: int = 7) -> int:
        return 0

    async def get_stats(self) -> OutboxStats:
        return OutboxStats(pending_count=len(self.entries))


class InMemoryTransaction(StoreTransaction):
    """Transaction over a private copy of the store state."""

    def __init__(self, state: _State) -> None:
        self._state = state
        self._outbox = _StagedOutbox()

    @property
    def outbox(self) -> OutboxRepository:
        return self._outbox

    @property
    def staged_outbox_entries(self) -> list[OutboxEntry]:
        return self._outbox.entries

    # -- products ---------------------------------------------------------

    async def get_product(self, product_id: UUID, *, for_update: bool = False) -> Product | None:
        product = self._state.products.get(product_id)
        return copy.deepcopy(product) if product else None

    async def add_product(self, product: Product) -> None:
        self._state.products[product.id] = copy.deepcopy(product)

    async def decrement_stock(self, product_id: UUID, quantity: int) -> int:
        product = self._state.products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if product.stock < quantity:
            raise InsufficientStockError(product_id, product.stock, quantity, product.name)
        product.stock -= quantity
        product.updated_at = utc_now()
        return product.stock

    async def increment_stock(self, product_id: UUID, quantity: int) -> int:
        product = self._state.products.get(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        product.stock += quantity
        product.updated_at = utc_now()
        return product.stock

    async def list_low_stock_products(self) -> list[Product]:
        return [
            copy.deepcopy(p)
            for p in self._state.products.values()
            if p.is_active and p.is_low_stock
        ]

    # -- addresses and carts ----------------------------------------------

    async def get_address(self, address_id: UUID) -> Address | None:
        address = self._state.addresses.get(address_id)
        return copy.deepcopy(address) if address else None

    async def add_address(self, address: Address) -> None:
        self._state.addresses[address.id] = copy.deepcopy(address)

    async def get_cart(self, customer_id: UUID) -> Cart | None:
        cart = self._state.carts.get(customer_id)
        return copy.deepcopy(cart) if cart else None

    async def add_cart(self, cart: Cart) -> None:
        self._state.carts[cart.customer_id] = copy.deepcopy(cart)

    async def list_cart_items(self, cart_id: UUID) -> list[CartItem]:
        return [
            copy.deepcopy(item)
            for (item_cart_id, _), item in self._state.cart_items.items()
            if item_cart_id == cart_id
        ]

    async def save_cart_item(self, item: CartItem) -> None:
        self._state.cart_items[(item.cart_id, item.product_id)] = copy.deepcopy(item)

    async def delete_cart_item(self, cart_id: UUID, product_id: UUID) -> bool:
        return self._state.cart_items.pop((cart_id, product_id), None) is not None

    async def clear_cart(self, cart_id: UUID) -> int:
        keys = [key for key in self._state.cart_items if key[0] == cart_id]
        for key in keys:
            del self._state.cart_items[key]
        return len(keys)

    # -- orders and payments ----------------------------------------------

    async def add_order(self, order: Order) -> None:
        if any(o.order_reference == order.order_reference for o in self._state.orders.values()):
            raise DuplicateOrderReferenceError(order.order_reference)
        self._state.orders[order.id] = copy.deepcopy(order)

    async def get_order(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        order = self._state.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def update_order(self, order: Order) -> None:
        stored = self._state.orders[order.id]
        if order.order_reference != stored.order_reference and any(
            o.order_reference == order.order_reference for o in self._state.orders.values()
        ):
            raise DuplicateOrderReferenceError(order.order_reference)
        updated = copy.deepcopy(order)
        updated.items = stored.items
        self._state.orders[order.id] = updated

    async def list_orders(
        self,
        *,
        customer_id: UUID | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        wanted = set(statuses) if statuses is not None else None
        orders = [
            o
            for o in self._state.orders.values()
            if (customer_id is None or o.customer_id == customer_id)
            and (wanted is None or o.status in wanted)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        if limit is not None:
            orders = orders[:limit]
        return copy.deepcopy(orders)

    async def add_payment(self, payment: Payment) -> None:
        key = (payment.provider, payment.provider_ref)
        if key in self._state.payments:
            raise DuplicatePaymentError(*key)
        self._state.payments[key] = copy.deepcopy(payment)

    async def get_payment_by_provider_ref(
        self,
        provider: str,
        provider_ref: str,
        *,
        for_update: bool = False,
    ) -> Payment | None:
        payment = self._state.payments.get((provider, provider_ref))
        return copy.deepcopy(payment) if payment else None

    async def list_payments(self, order_id: UUID) -> list[Payment]:
        payments = [p for p in self._state.payments.values() if p.order_id == order_id]
        payments.sort(key=lambda p: p.created_at)
        return copy.deepcopy(payments)

    async def update_payment(self, payment: Payment) -> None:
        self._state.payments[(payment.provider, payment.provider_ref)] = copy.deepcopy(payment)

    # -- audit and webhooks -----------------------------------------------

    async def add_audit_entry(self, entry: AuditLogEntry) -> None:
        self._state.audit_entries.append(entry)

    async def get_audit_entry(self, entry_id: UUID) -> AuditLogEntry | None:
        return next((e for e in self._state.audit_entries if e.id == entry_id), None)

    async def list_audit_entries(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        # Entries are appended in commit order; reversed() keeps ties stable
        entries = [
            e
            for e in reversed(self._state.audit_entries)
            if (entity_type is None or e.entity_type == entity_type)
            and (entity_id is None or e.entity_id == entity_id)
        ]
        return entries[:limit] if limit is not None else entries

    async def get_webhook_event(self, provider: str, event_id: str) -> WebhookEventRecord | None:
        record = self._state.webhook_events.get((provider, event_id))
        return copy.deepcopy(record) if record else None

    async def add_webhook_event(self, record: WebhookEventRecord) -> None:
        key = (record.provider, record.event_id)
        if key in self._state.webhook_events:
            raise DuplicateWebhookEventError(record.provider, record.event_id)
        self._state.webhook_events[key] = copy.deepcopy(record)


class InMemoryOrderStore(OrderStore):
    """
    In-memory implementation of the order store.

    Example:
        >>> store = InMemoryOrderStore()
        >>> async with store.transaction() as tx:
        ...     await tx.add_product(Product(name="Tea", price=Decimal("4.50"), stock=10))
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._state = _State()
        self._lock = asyncio.Lock()
        self._outbox = InMemoryOutboxRepository(tracer=self._tracer)

    @property
    def outbox(self) -> InMemoryOutboxRepository:
        return self._outbox

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryTransaction]:
        with self._tracer.span(
            "ordercore.store.transaction",
            {ATTR_DB_SYSTEM: "memory", ATTR_DB_OPERATION: "transaction"},
        ):
            async with self._lock:
                working = copy.deepcopy(self._state)
                tx = InMemoryTransaction(working)
                yield tx
                self._state = working
                if tx.staged_outbox_entries:
                    await self._outbox.append(tx.staged_outbox_entries)

    async def clear(self) -> None:
        """Drop all data. Useful for test setup/teardown."""
        async with self._lock:
            self._state = _State()
        await self._outbox.clear()


__all__ = ["InMemoryOrderStore", "InMemoryTransaction"]
