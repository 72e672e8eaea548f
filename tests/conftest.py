"""
Shared pytest fixtures for the ordercore tests.

This module provides:
- Sample data fixtures (customer_id, other_customer_id)
- Store fixtures (in_memory_store, sqlite_store)
- Collaborator fakes (provider, dispatcher, invoices, tracer)
- Service fixtures (orders, refunds, carts, inventory, audit, publisher)
- Factories for seeding products and addresses and for placing orders

Service fixtures run against ``store``, which defaults to the in-memory
backend. Test modules override ``store`` to run the same flows on SQLite.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from ordercore.audit import AuditLogService
from ordercore.cache import TTLCache
from ordercore.config import OrderCoreConfig
from ordercore.models import Address, Order, Product
from ordercore.notifications import (
    OutboxPublisher,
    RecordingInvoiceGenerator,
    RecordingNotificationDispatcher,
)
from ordercore.observability import MockTracer
from ordercore.payments import InMemoryPaymentProvider
from ordercore.services import CartService, InventoryService, OrderService, RefundService
from ordercore.stores import InMemoryOrderStore, OrderStore, SQLiteOrderStore

WEBHOOK_SECRET = "whsec_test_secret"


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")
    config.addinivalue_line("markers", "postgres: marks tests that require PostgreSQL")


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def customer_id() -> UUID:
    """Provide a random customer ID."""
    return uuid4()


@pytest.fixture
def other_customer_id() -> UUID:
    """Provide a second customer ID for ownership tests."""
    return uuid4()


@pytest.fixture
def config() -> OrderCoreConfig:
    """Service configuration with a known webhook secret."""
    return OrderCoreConfig(webhook_secret=WEBHOOK_SECRET)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def in_memory_store() -> InMemoryOrderStore:
    """Provide a fresh in-memory order store."""
    return InMemoryOrderStore(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncGenerator[SQLiteOrderStore, None]:
    """
    Provide an initialized in-memory SQLite order store.

    WAL mode is disabled because it is not supported for :memory:.
    """
    store = SQLiteOrderStore(":memory:", wal_mode=False, enable_tracing=False)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def store(in_memory_store: InMemoryOrderStore) -> OrderStore:
    """The store used by the service fixtures."""
    return in_memory_store


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def provider() -> InMemoryPaymentProvider:
    """Provide a deterministic payment provider."""
    return InMemoryPaymentProvider()


@pytest.fixture
def dispatcher() -> RecordingNotificationDispatcher:
    """Provide a notification dispatcher that records calls."""
    return RecordingNotificationDispatcher()


@pytest.fixture
def invoices() -> RecordingInvoiceGenerator:
    """Provide an invoice generator that records calls."""
    return RecordingInvoiceGenerator()


@pytest.fixture
def tracer() -> MockTracer:
    """Provide a tracer that records span names."""
    return MockTracer()


@pytest.fixture
def cache() -> TTLCache:
    """Order read cache shared by the order and refund services."""
    return TTLCache(ttl=30.0)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def orders(
    store: OrderStore,
    provider: InMemoryPaymentProvider,
    config: OrderCoreConfig,
    cache: TTLCache,
) -> OrderService:
    return OrderService(store, provider, config=config, cache=cache, enable_tracing=False)


@pytest.fixture
def refunds(
    store: OrderStore,
    provider: InMemoryPaymentProvider,
    config: OrderCoreConfig,
    cache: TTLCache,
) -> RefundService:
    return RefundService(store, provider, config=config, cache=cache, enable_tracing=False)


@pytest.fixture
def carts(store: OrderStore) -> CartService:
    return CartService(store, enable_tracing=False)


@pytest.fixture
def inventory(store: OrderStore) -> InventoryService:
    return InventoryService(store, enable_tracing=False)


@pytest.fixture
def audit(store: OrderStore) -> AuditLogService:
    return AuditLogService(store, enable_tracing=False)


@pytest.fixture
def publisher(
    store: OrderStore,
    dispatcher: RecordingNotificationDispatcher,
    invoices: RecordingInvoiceGenerator,
    config: OrderCoreConfig,
) -> OutboxPublisher:
    return OutboxPublisher(
        store.outbox, dispatcher, invoices, config=config, enable_tracing=False
    )


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_product(store: OrderStore) -> Callable[..., Awaitable[Product]]:
    """
    Factory fixture that inserts a product.

    Usage:
        product = await make_product(price="10.00", stock=5)
    """

    async def _make(
        name: str = "Widget",
        price: str | Decimal = "10.00",
        stock: int = 10,
        low_stock_threshold: int = 0,
        sale_price: str | Decimal | None = None,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            stock=stock,
            low_stock_threshold=low_stock_threshold,
            sale_price=Decimal(sale_price) if sale_price is not None else None,
            is_active=is_active,
        )
        async with store.transaction() as tx:
            await tx.add_product(product)
        return product

    return _make


@pytest.fixture
def make_address(store: OrderStore) -> Callable[[UUID], Awaitable[Address]]:
    """Factory fixture that inserts an address owned by a customer."""

    async def _make(owner: UUID) -> Address:
        address = Address(customer_id=owner, line1="1 Main St", city="Springfield")
        async with store.transaction() as tx:
            await tx.add_address(address)
        return address

    return _make


@pytest.fixture
def place_order(
    carts: CartService,
    orders: OrderService,
) -> Callable[..., Awaitable[Order]]:
    """
    Factory fixture that fills a cart and creates an order from it.

    Usage:
        order = await place_order(customer_id, [(product, 2)])
    """

    async def _place(customer: UUID, lines: list[tuple[Product, int]], **kwargs: Any) -> Order:
        for product, quantity in lines:
            await carts.add_item(customer, product.id, quantity)
        return await orders.create_order(customer, **kwargs)

    return _place


@pytest.fixture
def pay_order(
    orders: OrderService,
) -> Callable[[Order], Awaitable[str]]:
    """Factory fixture that creates a payment intent and marks it paid; returns the intent id."""

    async def _pay(order: Order) -> str:
        intent = await orders.create_payment_intent(order.id)
        await orders.mark_payment_paid(intent.payment_intent_id)
        return intent.payment_intent_id

    return _pay
