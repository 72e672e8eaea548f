"""
Inventory ledger.

Stock is only changed inside store transactions: by checkout and
cancellation in OrderService, and by the admin adjustments here. Every
adjustment writes one PRODUCT audit row, and a product left at or below
its low-stock threshold gets a ``LowStockDetected`` event in the outbox.
"""

from __future__ import annotations

import logging
from uuid import UUID

from ordercore.audit.snapshots import AuditLogEntry, ProductSnapshot
from ordercore.events.orders import LowStockDetected
from ordercore.exceptions import ProductNotFoundError, ValidationError
from ordercore.models import Product
from ordercore.observability import (
    ATTR_ACTOR_ID,
    ATTR_EVENT_COUNT,
    ATTR_PRODUCT_ID,
    ATTR_STOCK_DELTA,
    Tracer,
    create_tracer,
)
from ordercore.pricing import effective_price
from ordercore.stores.interface import OrderStore, StoreTransaction
from ordercore.types import ActorType, AuditAction, EntityType

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Admin stock operations and the low-stock sweep.

    Example:
        >>> inventory = InventoryService(store)
        >>> product = await inventory.adjust_stock(product_id, 25, performed_by="admin:1")
        >>> alerts = await inventory.sweep_low_stock()
    """

    def __init__(
        self,
        store: OrderStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def get_product(self, product_id: UUID) -> Product:
        """
        Get a product.

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        async with self._store.transaction() as tx:
            product = await tx.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    async def adjust_stock(self, product_id: UUID, delta: int, performed_by: str) -> Product:
        """
        Add ``delta`` units (negative to remove) to a product's stock.

        A zero delta changes nothing and writes no audit row.

        Raises:
            ProductNotFoundError: If the product does not exist
            InsufficientStockError: If the stock would go below zero
        """
        with self._tracer.span(
            "ordercore.inventory.adjust_stock",
            {
                ATTR_PRODUCT_ID: str(product_id),
                ATTR_STOCK_DELTA: delta,
                ATTR_ACTOR_ID: performed_by,
            },
        ):
            async with self._store.transaction() as tx:
                product = await tx.get_product(product_id, for_update=True)
                if product is None:
                    raise ProductNotFoundError(product_id)
                return await self._apply_delta(tx, product, delta, performed_by)

    async def set_stock(self, product_id: UUID, stock: int, performed_by: str) -> Product:
        """
        Set a product's stock to an absolute level.

        Raises:
            ValidationError: If ``stock`` is negative
            ProductNotFoundError: If the product does not exist
        """
        if stock < 0:
            raise ValidationError(f"Stock must not be negative, got {stock}")

        with self._tracer.span(
            "ordercore.inventory.set_stock",
            {ATTR_PRODUCT_ID: str(product_id), ATTR_ACTOR_ID: performed_by},
        ):
            async with self._store.transaction() as tx:
                product = await tx.get_product(product_id, for_update=True)
                if product is None:
                    raise ProductNotFoundError(product_id)
                return await self._apply_delta(tx, product, stock - product.stock, performed_by)

    async def _apply_delta(
        self,
        tx: StoreTransaction,
        product: Product,
        delta: int,
        performed_by: str,
    ) -> Product:
        if delta == 0:
            return product

        before = product.stock
        if delta > 0:
            product.stock = await tx.increment_stock(product.id, delta)
        else:
            product.stock = await tx.decrement_stock(product.id, -delta)

        await tx.add_audit_entry(
            AuditLogEntry(
                entity_type=EntityType.PRODUCT,
                entity_id=product.id,
                action=AuditAction.STOCK_ADJUSTMENT,
                performed_by=performed_by,
                actor_type=ActorType.ADMIN,
                before=ProductSnapshot(stock=before),
                after=ProductSnapshot(stock=product.stock),
            )
        )
        if product.is_low_stock:
            await tx.outbox.add_event(_low_stock_event(product))

        logger.info(
            "Stock of %s adjusted %+d to %d by %s",
            product.name,
            delta,
            product.stock,
            performed_by,
            extra={"product_id": str(product.id)},
        )
        return product

    async def list_low_stock(self) -> list[Product]:
        """Active products at or below their low-stock threshold."""
        async with self._store.transaction() as tx:
            return await tx.list_low_stock_products()

    async def sweep_low_stock(self) -> list[Product]:
        """
        Enqueue one ``LowStockDetected`` event per product that is low on stock.

        Returns:
            The products an alert was enqueued for
        """
        with self._tracer.span("ordercore.inventory.sweep_low_stock") as span:
            async with self._store.transaction() as tx:
                products = await tx.list_low_stock_products()
                for product in products:
                    await tx.outbox.add_event(_low_stock_event(product))

            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(products))
            if products:
                logger.info("Low-stock sweep enqueued %d alerts", len(products))
            return products


def _low_stock_event(product: Product) -> LowStockDetected:
    return LowStockDetected(
        aggregate_id=product.id,
        product_name=product.name,
        stock=product.stock,
        low_stock_threshold=product.low_stock_threshold,
    )


__all__ = ["InventoryService", "effective_price"]
