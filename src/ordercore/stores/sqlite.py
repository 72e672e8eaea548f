"""
SQLite order store.

Lightweight store using SQLite with async support via aiosqlite. Suitable
for development, tests and single-instance deployments.

SQLite-specific adaptations:
- UUIDs stored as TEXT (36 characters, hyphenated format)
- Timestamps stored as TEXT in ISO 8601 format
- Money stored as TEXT so Decimal values round-trip exactly
- Write transactions start with ``BEGIN IMMEDIATE`` and are serialized
  per store by an ``asyncio.Lock`` because they share one connection
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import aiosqlite

from ordercore.audit.snapshots import AuditLogEntry, parse_snapshot
from ordercore.exceptions import (
    DuplicateOrderReferenceError,
    DuplicatePaymentError,
    DuplicateWebhookEventError,
    InsufficientStockError,
    ProductNotFoundError,
)
from ordercore.migrations import get_schema
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
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    Tracer,
    create_tracer,
)
from ordercore.repositories.outbox import SQLiteOutboxRepository
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


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value is not None else None


def _str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


class SQLiteTransaction(StoreTransaction):
    """Transaction on the store's shared aiosqlite connection."""

    def __init__(self, connection: aiosqlite.Connection, outbox: SQLiteOutboxRepository) -> None:
        self._conn = connection
        self._outbox = outbox

    @property
    def outbox(self) -> SQLiteOutboxRepository:
        return self._outbox

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Row | None:
        cursor = await self._conn.execute(sql, params)
        return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        cursor = await self._conn.execute(sql, params)
        return list(await cursor.fetchall())

    # -- products ---------------------------------------------------------

    @staticmethod
    def _row_to_product(row: aiosqlite.Row) -> Product:
        return Product(
            id=UUID(row["id"]),
            name=row["name"],
            sku=row["sku"],
            price=Decimal(row["price"]),
            sale_price=_decimal(row["sale_price"]),
            stock=row["stock"],
            low_stock_threshold=row["low_stock_threshold"],
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]) or utc_now(),
            updated_at=_dt(row["updated_at"]) or utc_now(),
        )

    async def get_product(self, product_id: UUID, *, for_update: bool = False) -> Product | None:
        row = await self._fetchone(
            f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE id = ?", (str(product_id),)
        )
        return self._row_to_product(row) if row else None

    async def add_product(self, product: Product) -> None:
        await self._conn.execute(
            f"INSERT INTO products ({_PRODUCT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(product.id),
                product.name,
                product.sku,
                str(product.price),
                _str(product.sale_price),
                product.stock,
                product.low_stock_threshold,
                int(product.is_active),
                _iso(product.created_at),
                _iso(product.updated_at),
            ),
        )

    async def decrement_stock(self, product_id: UUID, quantity: int) -> int:
        cursor = await self._conn.execute(
            """
            UPDATE products
            SET stock = stock - ?, updated_at = ?
            WHERE id = ? AND stock >= ?
            """,
            (quantity, _iso(utc_now()), str(product_id), quantity),
        )
        product = await self.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if cursor.rowcount == 0:
            raise InsufficientStockError(product_id, product.stock, quantity, product.name)
        return product.stock

    async def increment_stock(self, product_id: UUID, quantity: int) -> int:
        cursor = await self._conn.execute(
            "UPDATE products SET stock = stock + ?, updated_at = ? WHERE id = ?",
            (quantity, _iso(utc_now()), str(product_id)),
        )
        if cursor.rowcount == 0:
            raise ProductNotFoundError(product_id)
        row = await self._fetchone("SELECT stock FROM products WHERE id = ?", (str(product_id),))
        assert row is not None
        return int(row["stock"])

    async def list_low_stock_products(self) -> list[Product]:
        rows = await self._fetchall(
            f"""
            SELECT {_PRODUCT_COLUMNS} FROM products
            WHERE is_active = 1 AND stock <= low_stock_threshold
            ORDER BY name
            """
        )
        return [self._row_to_product(row) for row in rows]

    # -- addresses and carts ----------------------------------------------

    async def get_address(self, address_id: UUID) -> Address | None:
        row = await self._fetchone(
            """
            SELECT id, customer_id, line1, city, postal_code, country
            FROM addresses WHERE id = ?
            """,
            (str(address_id),),
        )
        if row is None:
            return None
        return Address(
            id=UUID(row["id"]),
            customer_id=UUID(row["customer_id"]),
            line1=row["line1"],
            city=row["city"],
            postal_code=row["postal_code"],
            country=row["country"],
        )

    async def add_address(self, address: Address) -> None:
        await self._conn.execute(
            """
            INSERT INTO addresses (id, customer_id, line1, city, postal_code, country)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(address.id),
                str(address.customer_id),
                address.line1,
                address.city,
                address.postal_code,
                address.country,
            ),
        )

    async def get_cart(self, customer_id: UUID) -> Cart | None:
        row = await self._fetchone(
            "SELECT id, customer_id, created_at FROM carts WHERE customer_id = ?",
            (str(customer_id),),
        )
        if row is None:
            return None
        return Cart(
            id=UUID(row["id"]),
            customer_id=UUID(row["customer_id"]),
            created_at=_dt(row["created_at"]) or utc_now(),
        )

    async def add_cart(self, cart: Cart) -> None:
        await self._conn.execute(
            "INSERT INTO carts (id, customer_id, created_at) VALUES (?, ?, ?)",
            (str(cart.id), str(cart.customer_id), _iso(cart.created_at)),
        )

    async def list_cart_items(self, cart_id: UUID) -> list[CartItem]:
        rows = await self._fetchall(
            "SELECT id, cart_id, product_id, quantity FROM cart_items WHERE cart_id = ? "
            "ORDER BY rowid",
            (str(cart_id),),
        )
        return [
            CartItem(
                id=UUID(row["id"]),
                cart_id=UUID(row["cart_id"]),
                product_id=UUID(row["product_id"]),
                quantity=row["quantity"],
            )
            for row in rows
        ]

    async def save_cart_item(self, item: CartItem) -> None:
        await self._conn.execute(
            """
            INSERT INTO cart_items (id, cart_id, product_id, quantity)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (cart_id, product_id) DO UPDATE SET quantity = excluded.quantity
            """,
            (str(item.id), str(item.cart_id), str(item.product_id), item.quantity),
        )

    async def delete_cart_item(self, cart_id: UUID, product_id: UUID) -> bool:
        cursor = await self._conn.execute(
            "DELETE FROM cart_items WHERE cart_id = ? AND product_id = ?",
            (str(cart_id), str(product_id)),
        )
        return cursor.rowcount > 0

    async def clear_cart(self, cart_id: UUID) -> int:
        cursor = await self._conn.execute(
            "DELETE FROM cart_items WHERE cart_id = ?", (str(cart_id),)
        )
        return max(cursor.rowcount, 0)

    # -- orders and payments ----------------------------------------------

    async def _load_items(self, order_id: UUID) -> list[OrderItem]:
        rows = await self._fetchall(
            "SELECT id, order_id, product_id, quantity, price FROM order_items "
            "WHERE order_id = ? ORDER BY rowid",
            (str(order_id),),
        )
        return [
            OrderItem(
                id=UUID(row["id"]),
                order_id=UUID(row["order_id"]),
                product_id=UUID(row["product_id"]),
                quantity=row["quantity"],
                price=Decimal(row["price"]),
            )
            for row in rows
        ]

    async def _row_to_order(self, row: aiosqlite.Row) -> Order:
        order_id = UUID(row["id"])
        return Order(
            id=order_id,
            order_reference=row["order_reference"],
            customer_id=UUID(row["customer_id"]),
            total=Decimal(row["total"]),
            currency=row["currency"],
            status=OrderStatus(row["status"]),
            shipping_address_id=_uuid(row["shipping_address_id"]),
            billing_address_id=_uuid(row["billing_address_id"]),
            tracking_number=row["tracking_number"],
            shipping_carrier=row["shipping_carrier"],
            refund_amount=_decimal(row["refund_amount"]),
            refund_reason=row["refund_reason"],
            refund_id=row["refund_id"],
            created_at=_dt(row["created_at"]) or utc_now(),
            updated_at=_dt(row["updated_at"]) or utc_now(),
            paid_at=_dt(row["paid_at"]),
            shipped_at=_dt(row["shipped_at"]),
            cancelled_at=_dt(row["cancelled_at"]),
            refund_requested_at=_dt(row["refund_requested_at"]),
            refund_at=_dt(row["refund_at"]),
            items=await self._load_items(order_id),
        )

    async def add_order(self, order: Order) -> None:
        existing = await self._fetchone(
            "SELECT 1 FROM orders WHERE order_reference = ?", (order.order_reference,)
        )
        if existing is not None:
            raise DuplicateOrderReferenceError(order.order_reference)
        await self._conn.execute(
            f"""
            INSERT INTO orders ({_ORDER_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(order.id),
                order.order_reference,
                str(order.customer_id),
                str(order.total),
                order.currency,
                order.status.value,
                _str(order.shipping_address_id),
                _str(order.billing_address_id),
                order.tracking_number,
                order.shipping_carrier,
                _str(order.refund_amount),
                order.refund_reason,
                order.refund_id,
                _iso(order.created_at),
                _iso(order.updated_at),
                _iso(order.paid_at),
                _iso(order.shipped_at),
                _iso(order.cancelled_at),
                _iso(order.refund_requested_at),
                _iso(order.refund_at),
            ),
        )
        await self._conn.executemany(
            """
            INSERT INTO order_items (id, order_id, product_id, quantity, price)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (str(item.id), str(order.id), str(item.product_id), item.quantity, str(item.price))
                for item in order.items
            ],
        )

    async def get_order(self, order_id: UUID, *, for_update: bool = False) -> Order | None:
        row = await self._fetchone(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?", (str(order_id),)
        )
        return await self._row_to_order(row) if row else None

    async def update_order(self, order: Order) -> None:
        try:
            await self._conn.execute(
                """
                UPDATE orders SET
                    order_reference = ?, status = ?, tracking_number = ?, shipping_carrier = ?,
                    refund_amount = ?, refund_reason = ?, refund_id = ?,
                    updated_at = ?, paid_at = ?, shipped_at = ?, cancelled_at = ?,
                    refund_requested_at = ?, refund_at = ?
                WHERE id = ?
                """,
                (
                    order.order_reference,
                    order.status.value,
                    order.tracking_number,
                    order.shipping_carrier,
                    _str(order.refund_amount),
                    order.refund_reason,
                    order.refund_id,
                    _iso(order.updated_at),
                    _iso(order.paid_at),
                    _iso(order.shipped_at),
                    _iso(order.cancelled_at),
                    _iso(order.refund_requested_at),
                    _iso(order.refund_at),
                    str(order.id),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateOrderReferenceError(order.order_reference) from e

    async def list_orders(
        self,
        *,
        customer_id: UUID | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        clauses: list[str] = []
        params: list[Any] = []
        if customer_id is not None:
            clauses.append("customer_id = ?")
            params.append(str(customer_id))
        if statuses is not None:
            wanted = [OrderStatus(s).value for s in statuses]
            if not wanted:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in wanted)})")
            params.extend(wanted)
        sql = f"SELECT {_ORDER_COLUMNS} FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self._fetchall(sql, tuple(params))
        return [await self._row_to_order(row) for row in rows]

    @staticmethod
    def _row_to_payment(row: aiosqlite.Row) -> Payment:
        return Payment(
            id=UUID(row["id"]),
            order_id=UUID(row["order_id"]),
            provider=row["provider"],
            provider_ref=row["provider_ref"],
            amount=Decimal(row["amount"]),
            currency=row["currency"],
            status=PaymentStatus(row["status"]),
            created_at=_dt(row["created_at"]) or utc_now(),
            paid_at=_dt(row["paid_at"]),
            refunded_at=_dt(row["refunded_at"]),
        )

    async def add_payment(self, payment: Payment) -> None:
        try:
            await self._conn.execute(
                f"INSERT INTO payments ({_PAYMENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(payment.id),
                    str(payment.order_id),
                    payment.provider,
                    payment.provider_ref,
                    str(payment.amount),
                    payment.currency,
                    payment.status.value,
                    _iso(payment.created_at),
                    _iso(payment.paid_at),
                    _iso(payment.refunded_at),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicatePaymentError(payment.provider, payment.provider_ref) from e

    async def get_payment_by_provider_ref(
        self,
        provider: str,
        provider_ref: str,
        *,
        for_update: bool = False,
    ) -> Payment | None:
        row = await self._fetchone(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE provider = ? AND provider_ref = ?",
            (provider, provider_ref),
        )
        return self._row_to_payment(row) if row else None

    async def list_payments(self, order_id: UUID) -> list[Payment]:
        rows = await self._fetchall(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE order_id = ? "
            "ORDER BY created_at, rowid",
            (str(order_id),),
        )
        return [self._row_to_payment(row) for row in rows]

    async def update_payment(self, payment: Payment) -> None:
        await self._conn.execute(
            "UPDATE payments SET status = ?, paid_at = ?, refunded_at = ? WHERE id = ?",
            (
                payment.status.value,
                _iso(payment.paid_at),
                _iso(payment.refunded_at),
                str(payment.id),
            ),
        )

    # -- audit and webhooks -----------------------------------------------

    @staticmethod
    def _row_to_audit_entry(row: aiosqlite.Row) -> AuditLogEntry:
        return AuditLogEntry(
            id=UUID(row["id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=UUID(row["entity_id"]),
            action=AuditAction(row["action"]),
            performed_by=row["performed_by"],
            actor_type=ActorType(row["actor_type"]),
            before=parse_snapshot(row["before_snapshot"]),
            after=parse_snapshot(row["after_snapshot"]),
            created_at=_dt(row["created_at"]) or utc_now(),
        )

    async def add_audit_entry(self, entry: AuditLogEntry) -> None:
        await self._conn.execute(
            """
            INSERT INTO audit_logs
                (id, entity_type, entity_id, action, performed_by, actor_type,
                 before_snapshot, after_snapshot, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(entry.id),
                entry.entity_type.value,
                str(entry.entity_id),
                entry.action.value,
                entry.performed_by,
                entry.actor_type.value,
                entry.snapshot_json("before"),
                entry.snapshot_json("after"),
                _iso(entry.created_at),
            ),
        )

    async def get_audit_entry(self, entry_id: UUID) -> AuditLogEntry | None:
        row = await self._fetchone("SELECT * FROM audit_logs WHERE id = ?", (str(entry_id),))
        return self._row_to_audit_entry(row) if row else None

    async def list_audit_entries(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if entity_type is not None:
            clauses.append("entity_type = ?")
            params.append(EntityType(entity_type).value)
        if entity_id is not None:
            clauses.append("entity_id = ?")
            params.append(str(entity_id))
        sql = "SELECT * FROM audit_logs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self._fetchall(sql, tuple(params))
        return [self._row_to_audit_entry(row) for row in rows]

    async def get_webhook_event(self, provider: str, event_id: str) -> WebhookEventRecord | None:
        row = await self._fetchone(
            """
            SELECT provider, event_id, event_type, provider_ref, received_at
            FROM webhook_events WHERE provider = ? AND event_id = ?
            """,
            (provider, event_id),
        )
        if row is None:
            return None
        return WebhookEventRecord(
            provider=row["provider"],
            event_id=row["event_id"],
            event_type=row["event_type"],
            provider_ref=row["provider_ref"],
            received_at=_dt(row["received_at"]) or utc_now(),
        )

    async def add_webhook_event(self, record: WebhookEventRecord) -> None:
        try:
            await self._conn.execute(
                """
                INSERT INTO webhook_events
                    (provider, event_id, event_type, provider_ref, received_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.provider,
                    record.event_id,
                    record.event_type,
                    record.provider_ref,
                    _iso(record.received_at),
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise DuplicateWebhookEventError(record.provider, record.event_id) from e


class SQLiteOrderStore(OrderStore):
    """
    SQLite implementation of the order store.

    Attributes:
        _database: Path to SQLite file or ':memory:'
        _wal_mode: Whether WAL mode is enabled
        _busy_timeout: Timeout in ms for a busy database
        _connection: The aiosqlite connection (set after connect/initialize)

    Example:
        >>> async with SQLiteOrderStore(":memory:") as store:
        ...     async with store.transaction() as tx:
        ...         await tx.add_product(product)
    """

    def __init__(
        self,
        database: str,
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite order store.

        Args:
            database: Path to SQLite database file or ':memory:'
            wal_mode: If True, enable WAL mode (default: True)
            busy_timeout: Timeout in milliseconds when database is locked (default: 5000)
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._outbox: SQLiteOutboxRepository | None = None

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = await aiosqlite.connect(self._database, isolation_level=None)
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")
        self._connection.row_factory = aiosqlite.Row
        self._outbox = SQLiteOutboxRepository(
            self._connection, tracer=self._tracer, lock=self._lock
        )

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._outbox = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """Connect and create the schema. Idempotent."""
        await self._connect()
        assert self._connection is not None
        await self._connection.executescript(get_schema("sqlite"))
        logger.info("Initialized SQLite order store schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    @property
    def outbox(self) -> SQLiteOutboxRepository:
        self._ensure_connected()
        assert self._outbox is not None
        return self._outbox

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLiteTransaction]:
        conn = self._ensure_connected()
        with self._tracer.span(
            "ordercore.store.transaction",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_NAME: self._database,
                ATTR_DB_OPERATION: "transaction",
            },
        ):
            async with self._lock:
                await conn.execute("BEGIN IMMEDIATE")
                tx = SQLiteTransaction(
                    conn,
                    SQLiteOutboxRepository(conn, tracer=self._tracer, autocommit=False),
                )
                try:
                    yield tx
                except BaseException:
                    await conn.execute("ROLLBACK")
                    raise
                await conn.execute("COMMIT")

    @property
    def database(self) -> str:
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connection is not None


__all__ = ["SQLiteOrderStore", "SQLiteTransaction"]
