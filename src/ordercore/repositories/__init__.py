"""
Repositories for the transactional outbox.

Example:
    >>> from ordercore.repositories import InMemoryOutboxRepository
    >>>
    >>> outbox = InMemoryOutboxRepository()
    >>> await outbox.add_event(event)
"""

from ordercore.repositories.outbox import (
    InMemoryOutboxRepository,
    OutboxEntry,
    OutboxRepository,
    OutboxStats,
    PostgreSQLOutboxRepository,
    SQLiteOutboxRepository,
    build_entry,
)

__all__ = [
    "OutboxEntry",
    "OutboxStats",
    "OutboxRepository",
    "InMemoryOutboxRepository",
    "SQLiteOutboxRepository",
    "PostgreSQLOutboxRepository",
    "build_entry",
]
