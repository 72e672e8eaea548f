"""
Store interface for the order core.

This module defines the abstract base classes that store backends
implement:

- OrderStore: owns the connection and opens transactions
- StoreTransaction: the unit of work every service operation runs in

A service operation is a single ``async with store.transaction() as tx``
block. Everything done through ``tx`` commits together when the block
exits normally and is rolled back when it raises. Backends guarantee
that concurrent transactions are isolated: two checkouts racing for the
last unit of stock cannot both succeed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from typing import Any
from uuid import UUID

from ordercore.audit.snapshots import AuditLogEntry
from ordercore.models import (
    Address,
    Cart,
    CartItem,
    Order,
    Payment,
    Product,
    WebhookEventRecord,
)
from ordercore.repositories.outbox import OutboxRepository
from ordercore.types import EntityType, OrderStatus


class StoreTransaction(ABC):
    """
    Unit of work over the order core tables.

    Records returned by ``get_*`` and ``list_*`` are detached copies;
    changes reach the store only through the ``add_*``/``update_*``
    methods. ``for_update=True`` asks the backend to lock the row until
    the transaction ends (a no-op where transactions are already
    serialized).
    """

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        """Outbox repository bound to this transaction."""

    # -- products ---------------------------------------------------------

    @abstractmethod
    async def get_product(self, product_id: UUID, *, for_update: bool = False) -> Product | None:
        """Get a product by id."""

    @abstractmethod
    async def add_product(self, product: Product) -> None:
        """Insert a product."""

    @abstractmethod
    async def decrement_stock(self, product_id: UUID, quantity: int) -> int:
        """
        Atomically take ``quantity`` units from a product's stock.

        Implemented as a guarded ``stock = stock - q WHERE stock >= q``
        update, so the check and the decrement cannot be separated by a
        concurrent writer.

        Returns:
            The new stock level

        Raises:
            ProductNotFoundError: If the product does not exist
            InsufficientStockError: If fewer than ``quantity`` units remain
        """

    @abstractmethod
    async def increment_stock(self, product_id: UUID, quantity: int) -> int:
        """
        Return ``quantity`` units to a product's stock.

        Returns:
            The new stock level

        Raises:
            ProductNotFoundError: If the product does not exist
        """

    @abstractmethod
    async def list_low_stock_products(self) -> list[Product]:
        """Active products whose stock is at or below their threshold."""

    # -- addresses and carts ----------------------------------------------

    @abstractmethod
    async def get_address(self, address_id: UUID) -> Address | None:
        """Get an address by id."""

    @abstractmethod
    async def add_address(self, address: Address) -> None:
        """Insert an address."""

    @abstractmethod
    async def get_cart(self, customer_id: UUID) -> Cart | None:
        """Get the customer's cart, if one was created."""

    @abstractmethod
    async def add_cart(self, cart: Cart) -> None:
        """Insert a cart."""

    @abstractmethod
    async def list_cart_items(self, cart_id: UUID) -> list[CartItem]:
        """Lines of a cart in insertion order."""

    @abstractmethod
    async def save_cart_item(self, item: CartItem) -> None:
        """Insert or replace the line for ``(item.cart_id, item.product_id)``."""

    @abstractmethod
    async def delete_cart_item(self, cart_id: UUID, product_id: UUID) -> bool:
        """Delete one line; returns False if there was none."""

    @abstractmethod
    async def clear_cart(self, cart_id: UUID) -> int:
        """Delete every line of a cart; returns the number deleted."""

    # -- orders and payments ----------------------------------------------

    @abstractmethod
    async def add_order(self, order: Order) -> None:
        """
        Insert an order together with its items.

        Raises:
            DuplicateOrderReferenceError: If the order reference is taken
        """

    @abstractmethod
    async def get_order(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        """Get an order with its items."""

    @abstractmethod
    async def update_order(self, order: Order) -> None:
        """
        Persist the mutable fields of an order (items and total are immutable).

        Raises:
            DuplicateOrderReferenceError: If a changed order reference is taken
        """

    @abstractmethod
    async def list_orders(
        self,
        *,
        customer_id: UUID | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        """Orders newest first, optionally filtered by customer and status."""

    @abstractmethod
    async def add_payment(self, payment: Payment) -> None:
        """
        Insert a payment.

        Raises:
            DuplicatePaymentError: If (provider, provider_ref) already has a payment
        """

    @abstractmethod
    async def get_payment_by_provider_ref(
        self,
        provider: str,
        provider_ref: str,
        *,
        for_update: bool = False,
    ) -> Payment | None:
        """Get the payment for a provider reference."""

    @abstractmethod
    async def list_payments(self, order_id: UUID) -> list[Payment]:
        """Payments of an order, oldest first."""

    @abstractmethod
    async def update_payment(self, payment: Payment) -> None:
        """Persist the mutable fields of a payment."""

    # -- audit and webhooks -----------------------------------------------

    @abstractmethod
    async def add_audit_entry(self, entry: AuditLogEntry) -> None:
        """Append an audit entry."""

    @abstractmethod
    async def get_audit_entry(self, entry_id: UUID) -> AuditLogEntry | None:
        """Get an audit entry by id."""

    @abstractmethod
    async def list_audit_entries(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Audit entries newest first."""

    @abstractmethod
    async def get_webhook_event(self, provider: str, event_id: str) -> WebhookEventRecord | None:
        """Get a recorded webhook event."""

    @abstractmethod
    async def add_webhook_event(self, record: WebhookEventRecord) -> None:
        """
        Record a processed webhook event.

        Raises:
            DuplicateWebhookEventError: If the event id is already recorded
        """


class OrderStore(ABC):
    """
    Abstract base class for order core stores.

    Example:
        >>> async with store.transaction() as tx:
        ...     order = await tx.get_order(order_id, for_update=True)
        ...     order.status = OrderStatus.SHIPPED
        ...     await tx.update_order(order)
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open a transaction that commits on normal exit and rolls back on error."""

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        """Outbox repository for the publisher, outside order transactions."""

    async def initialize(self) -> None:
        """Create the schema if the backend needs one."""
        return None

    async def close(self) -> None:
        """Release connections held by the store."""
        return None

    async def __aenter__(self) -> Any:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["OrderStore", "StoreTransaction"]
