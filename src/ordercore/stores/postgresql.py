"""
PostgreSQL order store.

Production store using SQLAlchemy's async engine (asyncpg driver) with
``text()`` queries. Each transaction is ``engine.begin()``; rows that a
service reads and then rewrites are locked with ``SELECT ... FOR UPDATE``
and the stock decrement is a single guarded ``UPDATE``, so concurrent
checkouts serialize on the product rows they share.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ordercore.audit.snapshots import AuditLogEntry, parse_snapshot
from ordercore.exceptions import (
    DuplicateOrderReferenceError,
    DuplicatePaymentError,
    DuplicateWebhookEventError,
    InsufficientStockError,
    ProductNotFoundError,
)
from ordercore.migrations import get_statements
from ordercore.models import (
    Address,
    Cart,
    CartItem,
    Order,
    OrderItem,
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
from ordercore.repositories.outbox import PostgreSQLOutboxRepository
from ordercore.stores.interface import OrderStore, StoreTransaction
from ordercore.types import ActorType, AuditAction, EntityType, OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = (
    "id, order_reference, customer_id, total, currency, status, shipping_address_id, "
    "billing_address_id, tracking_number, shipping_carrier, refund_amount, refund_reason, "
    "refund_id, created_at, updated_at, paid_at, shipped_at, cancelled_at, "
    "refund_requested_at, refund_at"
)

_PRODUCT_COLUMNS = (
    "id, name, sku, price, sale_price, stock, low_stock_threshold, is_active, "
    "created_at, updated_at"
)

_PAYMENT_COLUMNS = (
    "id, order_id, provider, provider_ref, amount, currency, status, created_at, "
    "paid_at, refunded_at"
)


def _as_uuid(value: Any) -> UUID:
    # asyncpg hands back its own UUID type
    return UUID(str(value))


def _as_optional_uuid(value: Any) -> UUID | None:
    return _as_uuid(value) if value is not None else None


def _lock_clause(for_update: bool) -> str:
    return " FOR UPDATE" if for_update else ""


class PostgreSQLTransaction(StoreTransaction):
    """Transaction bound to one ``AsyncConnection`` from ``engine.begin()``."""

    def __init__(self, conn: AsyncConnection, outbox: PostgreSQLOutboxRepository) -> None:
        self._conn = conn
        self._outbox = outbox

    @property
    def outbox(self) -> PostgreSQLOutboxRepository:
        return self._outbox

    async def _fetchone(self, sql: str, params: Mapping[str, Any] | None = None) -> Any:
        result = await self._conn.execute(text(sql), dict(params or {}))
        row = result.fetchone()
        return row._mapping if row is not None else None

    async def _fetchall(self, sql: Any, params: Mapping[str, Any] | None = None) -> list[Any]:
        query = text(sql) if isinstance(sql, str) else sql
        result = await self._conn.execute(query, dict(params or {}))
        return [row._mapping for row in result.fetchall()]

    # -- products ---------------------------------------------------------

    @staticmethod
    def _row_to_product(row: Any) -> Product:
        return Product(
            id=_as_uuid(row["id"]),
            name=row["name"],
            sku=row["sku"],
            price=row["price"],
            sale_price=row["sale_price"],
            stock=row["stock"],
            low_stock_threshold=row["low_stock_threshold"],
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def get_product(self, product_id: UUID, *, for_update: bool = False) -> Product | None:
        row = await self._fetchone(
            f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id = :id" + _lock_clause(for_update),
            {"id": product_id},
        )
        return self._row_to_product(row) if row else None

    async def add_product(self, product: Product) -> None:
        await self._conn.execute(
            text(f"""
                INSERT INTO products ({_PRODUCT_COLUMNS})
                VALUES (:id, :name, :sku, :price, :sale_price, :stock, :low_stock_threshold,
                        :is_active, :created_at, :updated_at)
            """),
            {
                "id": product.id,
                "name": product.name,
                "sku": product.sku,
                "price": product.price,
                "sale_price": product.sale_price,
                "stock": product.stock,
                "low_stock_threshold": product.low_stock_threshold,
                "is_active": product.is_active,
                "created_at": product.created_at,
                "updated_at": product.updated_at,
            },
        )

    async def decrement_stock(self, product_id: UUID, quantity: int) -> int:
        row = await self._fetchone(
            """
            UPDATE products
            SET stock = stock - :quantity, updated_at = :now
            WHERE id = :id AND stock >= :quantity
            RETURNING stock
            """,
            {"id": product_id, "quantity": quantity, "now": utc_now()},
        )
        if row is not None:
            return int(row["stock"])
        product = await self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        raise InsufficientStockError(product_id, product.stock, quantity, product.name)

    async def increment_stock(self, product_id: UUID, quantity: int) -> int:
        row = await self._fetchone(
            """
            UPDATE products
            SET stock = stock + :quantity, updated_at = :now
            WHERE id = :id
            RETURNING stock
            """,
            {"id": product_id, "quantity": quantity, "now": utc_now()},
        )
        if row is None:
            raise ProductNotFoundError(product_id)
        return int(row["stock"])

    async def list_low_stock_products(self) -> list[Product]:
        rows = await self._fetchall(
            f"""
            SELECT {_PRODUCT_COLUMNS} FROM products
            WHERE is_active AND stock <= low_stock_threshold
            ORDER BY name
            """
        )
        return [self._row_to_product(row) for row in rows]

    # -- addresses and carts ----------------------------------------------

    async def get_address(self, address_id: UUID) -> Address | None:
        row = await self._fetchone(
            """
            SELECT id, customer_id, line1, city, postal_code, country
            FROM addresses WHERE id = :id
            """,
            {"id": address_id},
        )
        if row is None:
            return None
        return Address(
            id=_as_uuid(row["id"]),
            customer_id=_as_uuid(row["customer_id"]),
            line1=row["line1"],
            city=row["city"],
            postal_code=row["postal_code"],
            country=row["country"],
        )

    async def add_address(self, address: Address) -> None:
        await self._conn.execute(
            text("""
                INSERT INTO addresses (id, customer_id, line1, city, postal_code, country)
                VALUES (:id, :customer_id, :line1, :city, :postal_code, :country)
            """),
            {
                "id": address.id,
                "customer_id": address.customer_id,
                "line1": address.line1,
                "city": address.city,
                "postal_code": address.postal_code,
                "country": address.country,
            },
        )

    async def get_cart(self, customer_id: UUID) -> Cart | None:
        row = await self._fetchone(
            "SELECT id, customer_id, created_at FROM carts WHERE customer_id = :customer_id",
            {"customer_id": customer_id},
        )
        if row is None:
            return None
        return Cart(
            id=_as_uuid(row["id"]),
            customer_id=_as_uuid(row["customer_id"]),
            created_at=row["created_at"],
        )

    async def add_cart(self, cart: Cart) -> None:
        await self._conn.execute(
            text("""
                INSERT INTO carts (id, customer_id, created_at)
                VALUES (:id, :customer_id, :created_at)
                ON CONFLICT (customer_id) DO NOTHING
            """),
            {"id": cart.id, "customer_id": cart.customer_id, "created_at": cart.created_at},
        )

    async def list_cart_items(self, cart_id: UUID) -> list[CartItem]:
        rows = await self._fetchall(
            "SELECT id, cart_id, product_id, quantity FROM cart_items WHERE cart_id = :cart_id "
            "ORDER BY ctid",
            {"cart_id": cart_id},
        )
        return [
            CartItem(
                id=_as_uuid(row["id"]),
                cart_id=_as_uuid(row["cart_id"]),
                product_id=_as_uuid(row["product_id"]),
                quantity=row["quantity"],
            )
            for row in rows
        ]

    async def save_cart_item(self, item: CartItem) -> None:
        await self._conn.execute(
            text("""
                INSERT INTO cart_items (id, cart_id, product_id, quantity)
                VALUES (:id, :cart_id, :product_id, :quantity)
                ON CONFLICT (cart_id, product_id) DO UPDATE SET quantity = EXCLUDED.quantity
            """),
            {
                "id": item.id,
                "cart_id": item.cart_id,
                "product_id": item.product_id,
                "quantity": item.quantity,
            },
        )

    async def delete_cart_item(self, cart_id: UUID, product_id: UUID) -> bool:
        result = await self._conn.execute(
            text("DELETE FROM cart_items WHERE cart_id = :cart_id AND product_id = :product_id"),
            {"cart_id": cart_id, "product_id": product_id},
        )
        return result.rowcount > 0

    async def clear_cart(self, cart_id: UUID) -> int:
        result = await self._conn.execute(
            text("DELETE FROM cart_items WHERE cart_id = :cart_id"), {"cart_id": cart_id}
        )
        return max(result.rowcount, 0)

    # -- orders and payments ----------------------------------------------

    async def _load_items(self, order_id: UUID) -> list[OrderItem]:
        rows = await self._fetchall(
            "SELECT id, order_id, product_id, quantity, price FROM order_items "
            "WHERE order_id = :order_id ORDER BY ctid",
            {"order_id": order_id},
        )
        return [
            OrderItem(
                id=_as_uuid(row["id"]),
                order_id=_as_uuid(row["order_id"]),
                product_id=_as_uuid(row["product_id"]),
                quantity=row["quantity"],
                price=row["price"],
            )
            for row in rows
        ]

    async def _row_to_order(self, row: Any) -> Order:
        order_id = _as_uuid(row["id"])
        return Order(
            id=order_id,
            order_reference=row["order_reference"],
            customer_id=_as_uuid(row["customer_id"]),
            total=row["total"],
            currency=row["currency"],
            status=OrderStatus(row["status"]),
            shipping_address_id=_as_optional_uuid(row["shipping_address_id"]),
            billing_address_id=_as_optional_uuid(row["billing_address_id"]),
            tracking_number=row["tracking_number"],
            shipping_carrier=row["shipping_carrier"],
            refund_amount=row["refund_amount"],
            refund_reason=row["refund_reason"],
            refund_id=row["refund_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            paid_at=row["paid_at"],
            shipped_at=row["shipped_at"],
            cancelled_at=row["cancelled_at"],
            refund_requested_at=row["refund_requested_at"],
            refund_at=row["refund_at"],
            items=await self._load_items(order_id),
        )

    async def add_order(self, order: Order) -> None:
        result = await self._conn.execute(
            text(f"""
                INSERT INTO orders ({_ORDER_COLUMNS})
                VALUES (:id, :order_reference, :customer_id, :total, :currency, :status,
                        :shipping_address_id, :billing_address_id, :tracking_number,
                        :shipping_carrier, :refund_amount, :refund_reason, :refund_id,
                        :created_at, :updated_at, :paid_at, :shipped_at, :cancelled_at,
                        :refund_requested_at, :refund_at)
                ON CONFLICT (order_reference) DO NOTHING
            """),
            {
                "id": order.id,
                "order_reference": order.order_reference,
                "customer_id": order.customer_id,
                "total": order.total,
                "currency": order.currency,
                "status": order.status.value,
                "shipping_address_id": order.shipping_address_id,
                "billing_address_id": order.billing_address_id,
                "tracking_number": order.tracking_number,
                "shipping_carrier": order.shipping_carrier,
                "refund_amount": order.refund_amount,
                "refund_reason": order.refund_reason,
                "refund_id": order.refund_id,
                "created_at": order.created_at,
                "updated_at": order.updated_at,
                "paid_at": order.paid_at,
                "shipped_at": order.shipped_at,
                "cancelled_at": order.cancelled_at,
                "refund_requested_at": order.refund_requested_at,
                "refund_at": order.refund_at,
            },
        )
        if result.rowcount == 0:
            raise DuplicateOrderReferenceError(order.order_reference)
        if order.items:
            await self._conn.execute(
                text("""
                    INSERT INTO order_items (id, order_id, product_id, quantity, price)
                    VALUES (:id, :order_id, :product_id, :quantity, :price)
                """),
                [
                    {
                        "id": item.id,
                        "order_id": order.id,
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "price": item.price,
                    }
                    for item in order.items
                ],
            )

    async def get_order(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        row = await self._fetchone(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = :id" + _lock_clause(for_update),
            {"id": order_id},
        )
        return await self._row_to_order(row) if row else None

    async def update_order(self, order: Order) -> None:
        try:
            await self._conn.execute(
                text("""
                    UPDATE orders SET
                        order_reference = :order_reference, status = :status,
                        tracking_number = :tracking_number,
                        shipping_carrier = :shipping_carrier, refund_amount = :refund_amount,
                        refund_reason = :refund_reason, refund_id = :refund_id,
                        updated_at = :updated_at, paid_at = :paid_at, shipped_at = :shipped_at,
                        cancelled_at = :cancelled_at, refund_requested_at = :refund_requested_at,
                        refund_at = :refund_at
                    WHERE id = :id
                """),
                {
                    "id": order.id,
                    "order_reference": order.order_reference,
                    "status": order.status.value,
                    "tracking_number": order.tracking_number,
                    "shipping_carrier": order.shipping_carrier,
                    "refund_amount": order.refund_amount,
                    "refund_reason": order.refund_reason,
                    "refund_id": order.refund_id,
                    "updated_at": order.updated_at,
                    "paid_at": order.paid_at,
                    "shipped_at": order.shipped_at,
                    "cancelled_at": order.cancelled_at,
                    "refund_requested_at": order.refund_requested_at,
                    "refund_at": order.refund_at,
                },
            )
        except IntegrityError as e:
            if "order_reference" not in str(e):
                raise
            raise DuplicateOrderReferenceError(order.order_reference) from e

    async def list_orders(
        self,
        *,
        customer_id: UUID | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if customer_id is not None:
            clauses.append("customer_id = :customer_id")
            params["customer_id"] = customer_id
        if statuses is not None:
            wanted = [OrderStatus(s).value for s in statuses]
            if not wanted:
                return []
            clauses.append("status IN :statuses")
            params["statuses"] = wanted
        sql = f"SELECT {_ORDER_COLUMNS} FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        query = text(sql)
        if "statuses" in params:
            query = query.bindparams(bindparam("statuses", expanding=True))
        rows = await self._fetchall(query, params)
        return [await self._row_to_order(row) for row in rows]

    @staticmethod
    def _row_to_payment(row: Any) -> Payment:
        return Payment(
            id=_as_uuid(row["id"]),
            order_id=_as_uuid(row["order_id"]),
            provider=row["provider"],
            provider_ref=row["provider_ref"],
            amount=row["amount"],
            currency=row["currency"],
            status=PaymentStatus(row["status"]),
            created_at=row["created_at"],
            paid_at=row["paid_at"],
            refunded_at=row["refunded_at"],
        )

    async def add_payment(self, payment: Payment) -> None:
        result = await self._conn.execute(
            text(f"""
                INSERT INTO payments ({_PAYMENT_COLUMNS})
                VALUES (:id, :order_id, :provider, :provider_ref, :amount, :currency, :status,
                        :created_at, :paid_at, :refunded_at)
                ON CONFLICT (provider, provider_ref) DO NOTHING
            """),
            {
                "id": payment.id,
                "order_id": payment.order_id,
                "provider": payment.provider,
                "provider_ref": payment.provider_ref,
                "amount": payment.amount,
                "currency": payment.currency,
                "status": payment.status.value,
                "created_at": payment.created_at,
                "paid_at": payment.paid_at,
                "refunded_at": payment.refunded_at,
            },
        )
        if result.rowcount == 0:
            raise DuplicatePaymentError(payment.provider, payment.provider_ref)

    async def get_payment_by_provider_ref(
        self,
        provider: str,
        provider_ref: str,
        *,
        for_update: bool = False,
    ) -> Payment | None:
        row = await self._fetchone(
            f"""
            SELECT {_PAYMENT_COLUMNS} FROM payments
            WHERE provider = :provider AND provider_ref = :provider_ref
            """
            + _lock_clause(for_update),
            {"provider": provider, "provider_ref": provider_ref},
        )
        return self._row_to_payment(row) if row else None

    async def list_payments(self, order_id: UUID) -> list[Payment]:
        rows = await self._fetchall(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE order_id = :order_id "
            "ORDER BY created_at",
            {"order_id": order_id},
        )
        return [self._row_to_payment(row) for row in rows]

    async def update_payment(self, payment: Payment) -> None:
        await self._conn.execute(
            text("""
                UPDATE payments
                SET status = :status, paid_at = :paid_at, refunded_at = :refunded_at
                WHERE id = :id
            """),
            {
                "id": payment.id,
                "status": payment.status.value,
                "paid_at": payment.paid_at,
                "refunded_at": payment.refunded_at,
            },
        )

    # -- audit and webhooks -----------------------------------------------

    @staticmethod
    def _row_to_audit_entry(row: Any) -> AuditLogEntry:
        return AuditLogEntry(
            id=_as_uuid(row["id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=_as_uuid(row["entity_id"]),
            action=AuditAction(row["action"]),
            performed_by=row["performed_by"],
            actor_type=ActorType(row["actor_type"]),
            before=parse_snapshot(row["before_snapshot"]),
            after=parse_snapshot(row["after_snapshot"]),
            created_at=row["created_at"],
        )

    async def add_audit_entry(self, entry: AuditLogEntry) -> None:
        await self._conn.execute(
            text("""
                INSERT INTO audit_logs
                    (id, entity_type, entity_id, action, performed_by, actor_type,
                     before_snapshot, after_snapshot, created_at)
                VALUES (:id, :entity_type, :entity_id, :action, :performed_by, :actor_type,
                        CAST(:before AS JSONB), CAST(:after AS JSONB), :created_at)
            """),
            {
                "id": entry.id,
                "entity_type": entry.entity_type.value,
                "entity_id": entry.entity_id,
                "action": entry.action.value,
                "performed_by": entry.performed_by,
                "actor_type": entry.actor_type.value,
                "before": entry.snapshot_json("before"),
                "after": entry.snapshot_json("after"),
                "created_at": entry.created_at,
            },
        )

    async def get_audit_entry(self, entry_id: UUID) -> AuditLogEntry | None:
        row = await self._fetchone("SELECT * FROM audit_logs WHERE id = :id", {"id": entry_id})
        return self._row_to_audit_entry(row) if row else None

    async def list_audit_entries(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if entity_type is not None:
            clauses.append("entity_type = :entity_type")
            params["entity_type"] = EntityType(entity_type).value
        if entity_id is not None:
            clauses.append("entity_id = :entity_id")
            params["entity_id"] = entity_id
        sql = "SELECT * FROM audit_logs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        rows = await self._fetchall(sql, params)
        return [self._row_to_audit_entry(row) for row in rows]

    async def get_webhook_event(self, provider: str, event_id: str) -> WebhookEventRecord | None:
        row = await self._fetchone(
            """
            SELECT provider, event_id, event_type, provider_ref, received_at
            FROM webhook_events WHERE provider = :provider AND event_id = :event_id
            """,
            {"provider": provider, "event_id": event_id},
        )
        if row is None:
            return None
        return WebhookEventRecord(
            provider=row["provider"],
            event_id=row["event_id"],
            event_type=row["event_type"],
            provider_ref=row["provider_ref"],
            received_at=row["received_at"],
        )

    async def add_webhook_event(self, record: WebhookEventRecord) -> None:
        result = await self._conn.execute(
            text("""
                INSERT INTO webhook_events
                    (provider, event_id, event_type, provider_ref, received_at)
                VALUES (:provider, :event_id, :event_type, :provider_ref, :received_at)
                ON CONFLICT (provider, event_id) DO NOTHING
            """),
            {
                "provider": record.provider,
                "event_id": record.event_id,
                "event_type": record.event_type,
                "provider_ref": record.provider_ref,
                "received_at": record.received_at,
            },
        )
        if result.rowcount == 0:
            raise DuplicateWebhookEventError(record.provider, record.event_id)


class PostgreSQLOrderStore(OrderStore):
    """
    PostgreSQL implementation of the order store.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/shop")
        >>> store = PostgreSQLOrderStore(engine)
        >>> await store.initialize()
        >>> async with store.transaction() as tx:
        ...     order = await tx.get_order(order_id, for_update=True)
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the PostgreSQL order store.

        Args:
            engine: SQLAlchemy async engine (asyncpg driver)
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._engine = engine
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._outbox = PostgreSQLOutboxRepository(engine, tracer=self._tracer)

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> PostgreSQLOrderStore:
        """Create a store with its own engine, e.g. ``postgresql+asyncpg://...``."""
        return cls(create_async_engine(url), **kwargs)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def outbox(self) -> PostgreSQLOutboxRepository:
        return self._outbox

    async def initialize(self) -> None:
        """Create the schema. Idempotent."""
        async with self._engine.begin() as conn:
            for statement in get_statements("postgresql"):
                await conn.execute(text(statement))
        logger.info("Initialized PostgreSQL order store schema")

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgreSQLTransaction]:
        with self._tracer.span(
            "ordercore.store.transaction",
            {ATTR_DB_SYSTEM: "postgresql", ATTR_DB_OPERATION: "transaction"},
        ):
            async with self._engine.begin() as conn:
                yield PostgreSQLTransaction(
                    conn, PostgreSQLOutboxRepository(conn, tracer=self._tracer)
                )


__all__ = ["PostgreSQLOrderStore", "PostgreSQLTransaction"]
