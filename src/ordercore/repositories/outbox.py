"""
Outbox repository for transactional side effects.

Notifications and invoice requests are never sent from inside a
state-changing operation. The operation writes a domain event to the
outbox in its own transaction; the ``OutboxPublisher`` delivers it later
and retries on failure. A delivery failure therefore never rolls back an
order, and a rolled-back order never produces a notification.
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ordercore.events.base import DomainEvent
from ordercore.observability import Tracer, create_tracer
from ordercore.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_OUTBOX_ID,
)

if TYPE_CHECKING:
    import aiosqlite


@dataclass
class OutboxEntry:
    """
    One side effect waiting for (or past) delivery.

    Attributes:
        id: Unique outbox entry identifier
        event_id: Event ID being delivered
        event_type: Registered event type name
        aggregate_id: Order or product the event belongs to
        aggregate_type: 'Order' or 'Product'
        event_data: Serialized event (JSON string, or dict from a JSONB column)
        created_at: When the entry was created
        status: pending, published or failed
        published_at: When the event was delivered (if applicable)
        retry_count: Number of failed delivery attempts
        last_error: Last delivery error message (if any)
    """

    id: UUID
    event_id: UUID
    event_type: str
    aggregate_id: UUID
    aggregate_type: str
    event_data: str | dict[str, Any]
    created_at: datetime
    status: str = "pending"
    published_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class OutboxStats:
    """
    Delivery health of the outbox.

    ``retrying_count`` counts pending entries whose delivery already failed
    at least once; a growing value means a collaborator is down.
    ``oldest_pending`` tells how far behind the publisher is.
    """

    pending_count: int = 0
    published_count: int = 0
    failed_count: int = 0
    retrying_count: int = 0
    oldest_pending: datetime | None = None


# Shared by the SQL backends; one row per status.
_STATS_QUERY = """
    SELECT status,
           COUNT(*),
           COUNT(CASE WHEN retry_count > 0 THEN 1 END),
           MIN(created_at)
    FROM event_outbox
    GROUP BY status
"""


def _stats_from_rows(
    rows: list[Any], parse_time: Callable[[Any], datetime | None] | None = None
) -> OutboxStats:
    counts: dict[str, int] = {}
    retrying = 0
    oldest = None
    for status, count, with_retries, first_created in rows:
        counts[status] = count
        if status == "pending":
            retrying = with_retries
            oldest = parse_time(first_created) if parse_time else first_created
    return OutboxStats(
        pending_count=counts.get("pending", 0),
        published_count=counts.get("published", 0),
        failed_count=counts.get("failed", 0),
        retrying_count=retrying,
        oldest_pending=oldest,
    )


@runtime_checkable
class OutboxRepository(Protocol):
    """
    Storage for pending side effects.

    ``add_event`` is called inside a store transaction; the remaining
    methods are used by the publisher outside any order transaction.
    """

    async def add_event(self, event: DomainEvent) -> UUID:
        """
        Add an event to the outbox.

        Args:
            event: Domain event to deliver

        Returns:
            Outbox record ID
        """
        ...

    async def get_pending_events(self, limit: int = 100) -> list[OutboxEntry]:
        """Get pending events, oldest first."""
        ...

    async def mark_published(self, outbox_id: UUID) -> None:
        """Mark an outbox event as delivered."""
        ...

    async def mark_failed(self, outbox_id: UUID, error: str) -> None:
        """Mark an outbox event as permanently failed."""
        ...

    async def increment_retry(self, outbox_id: UUID, error: str | None = None) -> None:
        """Record a failed delivery attempt."""
        ...

    async def cleanup_published(self, days: int = 7) -> int:
        """
        Delete delivered events older than ``days``.

        Returns:
            Number of records deleted
        """
        ...

    async def get_stats(self) -> OutboxStats:
        """Get outbox statistics."""
        ...


def build_entry(event: DomainEvent) -> OutboxEntry:
    """Build a pending outbox entry for an event."""
    return OutboxEntry(
        id=uuid4(),
        event_id=event.event_id,
        event_type=event.event_type,
        aggregate_id=event.aggregate_id,
        aggregate_type=event.aggregate_type,
        event_data=event.model_dump_json(),
        created_at=datetime.now(UTC),
    )


def _add_span_attributes(event: DomainEvent, db_system: str) -> dict[str, Any]:
    return {
        ATTR_EVENT_ID: str(event.event_id),
        ATTR_EVENT_TYPE: event.event_type,
        ATTR_DB_SYSTEM: db_system,
    }


class PostgreSQLOutboxRepository:
    """
    Outbox over the ``event_outbox`` table of a PostgreSQL order store.

    Pass the store's transaction connection to write atomically with order
    changes, or the engine for the publisher.

    Example:
        >>> async with engine.begin() as conn:
        ...     repo = PostgreSQLOutboxRepository(conn)
        ...     await repo.add_event(event)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    @contextlib.asynccontextmanager
    async def _connect(self, write: bool) -> AsyncIterator[AsyncConnection]:
        """Join the caller's transaction, or open a connection on the engine."""
        if isinstance(self.conn, AsyncConnection):
            yield self.conn
        elif write:
            async with self.conn.begin() as conn:
                yield conn
        else:
            async with self.conn.connect() as conn:
                yield conn

    async def add_event(self, event: DomainEvent) -> UUID:
        with self._tracer.span("ordercore.outbox.add", _add_span_attributes(event, "postgresql")):
            entry = build_entry(event)
            query = text("""
                INSERT INTO event_outbox
                    (id, event_id, event_type, aggregate_id, aggregate_type,
                     event_data, created_at, status)
                VALUES (:id, :event_id, :event_type, :aggregate_id, :aggregate_type,
                        CAST(:event_data AS JSONB), :created_at, 'pending')
            """)
            params = {
                "id": entry.id,
                "event_id": entry.event_id,
                "event_type": entry.event_type,
                "aggregate_id": entry.aggregate_id,
                "aggregate_type": entry.aggregate_type,
                "event_data": entry.event_data,
                "created_at": entry.created_at,
            }
            async with self._connect(write=True) as conn:
                await conn.execute(query, params)
            return entry.id

    async def get_pending_events(self, limit: int = 100) -> list[OutboxEntry]:
        with self._tracer.span(
            "ordercore.outbox.get_pending",
            {"limit": limit, ATTR_DB_SYSTEM: "postgresql"},
        ) as span:
            query = text("""
                SELECT id, event_id, event_type, aggregate_id, aggregate_type,
                       event_data, created_at, retry_count
                FROM event_outbox
                WHERE status = 'pending'
                ORDER BY created_at ASC
                LIMIT :limit
            """)
            async with self._connect(write=False) as conn:
                result = await conn.execute(query, {"limit": limit})
                rows = result.fetchall()

            entries = [
                OutboxEntry(
                    id=row[0],
                    event_id=row[1],
                    event_type=row[2],
                    aggregate_id=row[3],
                    aggregate_type=row[4],
                    event_data=row[5],
                    created_at=row[6],
                    status="pending",
                    retry_count=row[7],
                )
                for row in rows
            ]
            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(entries))
            return entries

    async def mark_published(self, outbox_id: UUID) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_published",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE event_outbox
                SET status = 'published',
                    published_at = :published_at
                WHERE id = :id
            """)
            async with self._connect(write=True) as conn:
                await conn.execute(query, {"id": outbox_id, "published_at": datetime.now(UTC)})

    async def increment_retry(self, outbox_id: UUID, error: str | None = None) -> None:
        with self._tracer.span(
            "ordercore.outbox.increment_retry",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE event_outbox
                SET retry_count = retry_count + 1,
                    last_error = :error
                WHERE id = :id
            """)
            async with self._connect(write=True) as conn:
                await conn.execute(query, {"id": outbox_id, "error": error})

    async def mark_failed(self, outbox_id: UUID, error: str) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_failed",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                UPDATE event_outbox
                SET status = 'failed',
                    last_error = :error
                WHERE id = :id
            """)
            async with self._connect(write=True) as conn:
                await conn.execute(query, {"id": outbox_id, "error": error})

    async def cleanup_published(self, days: int = 7) -> int:
        with self._tracer.span(
            "ordercore.outbox.cleanup",
            {"older_than_days": days, ATTR_DB_SYSTEM: "postgresql"},
        ) as span:
            query = text("""
                DELETE FROM event_outbox
                WHERE status = 'published'
                  AND published_at < NOW() - INTERVAL '1 day' * :days
                RETURNING id
            """)
            async with self._connect(write=True) as conn:
                result = await conn.execute(query, {"days": days})
                deleted = len(result.fetchall())
            if span:
                span.set_attribute("deleted_count", deleted)
            return deleted

    async def get_stats(self) -> OutboxStats:
        with self._tracer.span("ordercore.outbox.get_stats", {ATTR_DB_SYSTEM: "postgresql"}):
            async with self._connect(write=False) as conn:
                result = await conn.execute(text(_STATS_QUERY))
                rows = list(result.fetchall())
            return _stats_from_rows(rows)


class InMemoryOutboxRepository:
    """
    In-memory implementation of outbox repository.

    ``InMemoryOrderStore`` stages events added during a transaction and
    hands them to ``append`` on commit, so entries only appear for
    committed transactions.

    Example:
        >>> repo = InMemoryOutboxRepository()
        >>> outbox_id = await repo.add_event(event)
        >>> pending = await repo.get_pending_events()
        >>> await repo.mark_published(pending[0].id)
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._entries: dict[UUID, OutboxEntry] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def add_event(self, event: DomainEvent) -> UUID:
        with self._tracer.span("ordercore.outbox.add", _add_span_attributes(event, "memory")):
            entry = build_entry(event)
            await self.append([entry])
            return entry.id

    async def append(self, entries: list[OutboxEntry]) -> None:
        """Insert already-built entries (used on store commit)."""
        async with self._lock:
            for entry in entries:
                self._entries[entry.id] = entry

    async def get_pending_events(self, limit: int = 100) -> list[OutboxEntry]:
        with self._tracer.span(
            "ordercore.outbox.get_pending",
            {"limit": limit, ATTR_DB_SYSTEM: "memory"},
        ) as span:
            async with self._lock:
                pending = [e for e in self._entries.values() if e.status == "pending"]
                pending.sort(key=lambda e: e.created_at)
                result = pending[:limit]
            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(result))
            return result

    async def mark_published(self, outbox_id: UUID) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_published",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                entry = self._entries.get(outbox_id)
                if entry is not None:
                    entry.status = "published"
                    entry.published_at = datetime.now(UTC)

    async def increment_retry(self, outbox_id: UUID, error: str | None = None) -> None:
        with self._tracer.span(
            "ordercore.outbox.increment_retry",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                entry = self._entries.get(outbox_id)
                if entry is not None:
                    entry.retry_count += 1
                    entry.last_error = error

    async def mark_failed(self, outbox_id: UUID, error: str) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_failed",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                entry = self._entries.get(outbox_id)
                if entry is not None:
                    entry.status = "failed"
                    entry.last_error = error

    async def cleanup_published(self, days: int = 7) -> int:
        with self._tracer.span(
            "ordercore.outbox.cleanup",
            {"older_than_days": days, ATTR_DB_SYSTEM: "memory"},
        ) as span:
            cutoff = datetime.now(UTC) - timedelta(days=days)
            async with self._lock:
                expired = [
                    id_
                    for id_, entry in self._entries.items()
                    if entry.status == "published"
                    and entry.published_at
                    and entry.published_at < cutoff
                ]
                for id_ in expired:
                    del self._entries[id_]
            if span:
                span.set_attribute("deleted_count", len(expired))
            return len(expired)

    async def get_stats(self) -> OutboxStats:
        with self._tracer.span("ordercore.outbox.get_stats", {ATTR_DB_SYSTEM: "memory"}):
            async with self._lock:
                entries = list(self._entries.values())

            pending = [e for e in entries if e.status == "pending"]
            return OutboxStats(
                pending_count=len(pending),
                published_count=sum(1 for e in entries if e.status == "published"),
                failed_count=sum(1 for e in entries if e.status == "failed"),
                retrying_count=sum(1 for e in pending if e.retry_count),
                oldest_pending=min((e.created_at for e in pending), default=None),
            )

    async def get_all_entries(self) -> list[OutboxEntry]:
        """All entries regardless of status, oldest first. Useful in tests."""
        async with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.created_at)

    async def clear(self) -> None:
        """Drop every entry."""
        async with self._lock:
            self._entries.clear()


class SQLiteOutboxRepository:
    """
    Outbox over the ``event_outbox`` table of a SQLite order store.

    IDs and timestamps are TEXT (hyphenated UUIDs, ISO 8601).

    Inside a store transaction the repository is built with
    ``autocommit=False`` and shares the transaction's connection. The
    publisher's instance commits after each write and takes the store's
    lock so it never commits half of an open order transaction.
    """

    def __init__(
        self,
        connection: "aiosqlite.Connection",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        autocommit: bool = True,
        lock: asyncio.Lock | None = None,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection
        self._autocommit = autocommit
        self._lock = lock

    @staticmethod
    def _parse_datetime(value: str | None) -> datetime | None:
        if value is None:
            return None
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    def _guard(self) -> AbstractAsyncContextManager[Any]:
        # Standalone reads and writes wait for open store transactions
        if self._autocommit and self._lock is not None:
            return self._lock
        return contextlib.nullcontext()

    async def _write(self, sql: str, params: tuple[Any, ...]) -> int:
        async with self._guard():
            cursor = await self._connection.execute(sql, params)
            if self._autocommit:
                await self._connection.commit()
            return cursor.rowcount

    async def _fetch(self, sql: str, params: tuple[Any, ...] = ()) -> list[Any]:
        async with self._guard():
            cursor = await self._connection.execute(sql, params)
            return list(await cursor.fetchall())

    async def add_event(self, event: DomainEvent) -> UUID:
        with self._tracer.span("ordercore.outbox.add", _add_span_attributes(event, "sqlite")):
            entry = build_entry(event)
            await self._write(
                """
                INSERT INTO event_outbox
                    (id, event_id, event_type, aggregate_id, aggregate_type,
                     event_data, created_at, status)
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending')
                """,
                (
                    str(entry.id),
                    str(entry.event_id),
                    entry.event_type,
                    str(entry.aggregate_id),
                    entry.aggregate_type,
                    entry.event_data,
                    entry.created_at.isoformat(),
                ),
            )
            return entry.id

    async def get_pending_events(self, limit: int = 100) -> list[OutboxEntry]:
        with self._tracer.span(
            "ordercore.outbox.get_pending",
            {"limit": limit, ATTR_DB_SYSTEM: "sqlite"},
        ) as span:
            rows = await self._fetch(
                """
                SELECT id, event_id, event_type, aggregate_id, aggregate_type,
                       event_data, created_at, retry_count
                FROM event_outbox
                WHERE status = 'pending'
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (limit,),
            )

            entries = [
                OutboxEntry(
                    id=UUID(row[0]),
                    event_id=UUID(row[1]),
                    event_type=row[2],
                    aggregate_id=UUID(row[3]),
                    aggregate_type=row[4],
                    event_data=row[5],
                    created_at=self._parse_datetime(row[6]) or datetime.now(UTC),
                    status="pending",
                    retry_count=row[7] or 0,
                )
                for row in rows
            ]
            if span:
                span.set_attribute(ATTR_EVENT_COUNT, len(entries))
            return entries

    async def mark_published(self, outbox_id: UUID) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_published",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "sqlite"},
        ):
            await self._write(
                """
                UPDATE event_outbox
                SET status = 'published',
                    published_at = ?
                WHERE id = ?
                """,
                (datetime.now(UTC).isoformat(), str(outbox_id)),
            )

    async def increment_retry(self, outbox_id: UUID, error: str | None = None) -> None:
        with self._tracer.span(
            "ordercore.outbox.increment_retry",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "sqlite"},
        ):
            await self._write(
                """
                UPDATE event_outbox
                SET retry_count = retry_count + 1,
                    last_error = ?
                WHERE id = ?
                """,
                (error, str(outbox_id)),
            )

    async def mark_failed(self, outbox_id: UUID, error: str) -> None:
        with self._tracer.span(
            "ordercore.outbox.mark_failed",
            {ATTR_OUTBOX_ID: str(outbox_id), ATTR_DB_SYSTEM: "sqlite"},
        ):
            await self._write(
                """
                UPDATE event_outbox
                SET status = 'failed',
                    last_error = ?
                WHERE id = ?
                """,
                (error, str(outbox_id)),
            )

    async def cleanup_published(self, days: int = 7) -> int:
        with self._tracer.span(
            "ordercore.outbox.cleanup",
            {"older_than_days": days, ATTR_DB_SYSTEM: "sqlite"},
        ) as span:
            cutoff = datetime.now(UTC) - timedelta(days=days)
            deleted = await self._write(
                """
                DELETE FROM event_outbox
                WHERE status = 'published'
                  AND published_at < ?
                """,
                (cutoff.isoformat(),),
            )
            deleted = max(deleted, 0)
            if span:
                span.set_attribute("deleted_count", deleted)
            return deleted

    async def get_stats(self) -> OutboxStats:
        with self._tracer.span("ordercore.outbox.get_stats", {ATTR_DB_SYSTEM: "sqlite"}):
            rows = await self._fetch(_STATS_QUERY)
            return _stats_from_rows(rows, self._parse_datetime)


__all__ = [
    "OutboxEntry",
    "OutboxStats",
    "OutboxRepository",
    "InMemoryOutboxRepository",
    "SQLiteOutboxRepository",
    "PostgreSQLOutboxRepository",
    "build_entry",
]
