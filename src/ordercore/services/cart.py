"""
Cart aggregate.

One cart per customer, created on first access and emptied (never
deleted) at checkout. Quantities are checked against the current stock
when lines change; checkout checks them again under lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from ordercore.exceptions import (
    CartItemNotFoundError,
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)
from ordercore.models import Cart, CartItem, Product
from ordercore.observability import ATTR_CUSTOMER_ID, ATTR_PRODUCT_ID, Tracer, create_tracer
from ordercore.pricing import effective_price, order_total
from ordercore.stores.interface import OrderStore, StoreTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """A cart line priced at the product's current effective price."""

    product_id: UUID
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartView:
    """A customer's cart with priced lines."""

    cart_id: UUID
    customer_id: UUID
    lines: list[CartLine] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return order_total((line.unit_price, line.quantity) for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines


class CartService:
    """
    Cart operations for customers.

    Example:
        >>> carts = CartService(store)
        >>> view = await carts.add_item(customer_id, product.id, 2)
        >>> view.subtotal
        Decimal('20.00')
    """

    def __init__(
        self,
        store: OrderStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def get_cart(self, customer_id: UUID) -> CartView:
        """Get the customer's cart, creating it on first access."""
        async with self._store.transaction() as tx:
            cart = await self._ensure_cart(tx, customer_id)
            return await self._view(tx, cart)

    async def add_item(self, customer_id: UUID, product_id: UUID, quantity: int) -> CartView:
        """
        Add units of a product, merging with an existing line.

        Raises:
            ValidationError: If quantity is below 1 or the product is inactive
            ProductNotFoundError: If the product does not exist
            InsufficientStockError: If the merged quantity exceeds the stock
        """
        if quantity < 1:
            raise ValidationError(f"Quantity must be at least 1, got {quantity}")

        with self._tracer.span(
            "ordercore.cart.add_item",
            {ATTR_CUSTOMER_ID: str(customer_id), ATTR_PRODUCT_ID: str(product_id)},
        ):
            async with self._store.transaction() as tx:
                product = await self._available_product(tx, product_id)
                cart = await self._ensure_cart(tx, customer_id)
                existing = _find_line(await tx.list_cart_items(cart.id), product_id)
                merged = quantity + (existing.quantity if existing else 0)
                _check_stock(product, merged)

                if existing is not None:
                    existing.quantity = merged
                    await tx.save_cart_item(existing)
                else:
                    await tx.save_cart_item(
                        CartItem(cart_id=cart.id, product_id=product_id, quantity=merged)
                    )
                return await self._view(tx, cart)

    async def update_item_quantity(
        self,
        customer_id: UUID,
        product_id: UUID,
        quantity: int,
    ) -> CartView:
        """
        Set the quantity of a line; zero or less removes it.

        Raises:
            CartItemNotFoundError: If the product is not in the cart
            InsufficientStockError: If the quantity exceeds the stock
        """
        if quantity <= 0:
            return await self.remove_item(customer_id, product_id)

        with self._tracer.span(
            "ordercore.cart.update_item",
            {ATTR_CUSTOMER_ID: str(customer_id), ATTR_PRODUCT_ID: str(product_id)},
        ):
            async with self._store.transaction() as tx:
                cart = await self._ensure_cart(tx, customer_id)
                existing = _find_line(await tx.list_cart_items(cart.id), product_id)
                if existing is None:
                    raise CartItemNotFoundError(customer_id, product_id)
                product = await self._available_product(tx, product_id)
                _check_stock(product, quantity)

                existing.quantity = quantity
                await tx.save_cart_item(existing)
                return await self._view(tx, cart)

    async def remove_item(self, customer_id: UUID, product_id: UUID) -> CartView:
        """
        Remove a product from the cart.

        Raises:
            CartItemNotFoundError: If the product is not in the cart
        """
        async with self._store.transaction() as tx:
            cart = await self._ensure_cart(tx, customer_id)
            if not await tx.delete_cart_item(cart.id, product_id):
                raise CartItemNotFoundError(customer_id, product_id)
            return await self._view(tx, cart)

    async def clear_cart(self, customer_id: UUID) -> int:
        """Remove every line; returns the number removed."""
        async with self._store.transaction() as tx:
            cart = await self._ensure_cart(tx, customer_id)
            removed = await tx.clear_cart(cart.id)
        logger.debug("Cleared %d lines from cart of %s", removed, customer_id)
        return removed

    async def _ensure_cart(self, tx: StoreTransaction, customer_id: UUID) -> Cart:
        cart = await tx.get_cart(customer_id)
        if cart is None:
            cart = Cart(customer_id=customer_id)
            await tx.add_cart(cart)
            logger.debug("Created cart %s for customer %s", cart.id, customer_id)
        return cart

    async def _available_product(self, tx: StoreTransaction, product_id: UUID) -> Product:
        product = await tx.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.is_active:
            raise ValidationError(f"Product {product.name} is not available")
        return product

    async def _view(self, tx: StoreTransaction, cart: Cart) -> CartView:
        lines = []
        for item in await tx.list_cart_items(cart.id):
            product = await tx.get_product(item.product_id)
            if product is None:
                continue
            lines.append(
                CartLine(
                    product_id=product.id,
                    name=product.name,
                    quantity=item.quantity,
                    unit_price=effective_price(product),
                )
            )
        return CartView(cart_id=cart.id, customer_id=cart.customer_id, lines=lines)


def _find_line(items: list[CartItem], product_id: UUID) -> CartItem | None:
    return next((item for item in items if item.product_id == product_id), None)


def _check_stock(product: Product, quantity: int) -> None:
    if quantity > product.stock:
        raise InsufficientStockError(product.id, product.stock, quantity, product.name)


__all__ = ["CartLine", "CartService", "CartView"]
