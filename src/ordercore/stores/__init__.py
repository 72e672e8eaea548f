"""Order store implementations for the ordercore library."""

from ordercore.stores.in_memory import InMemoryOrderStore, InMemoryTransaction
from ordercore.stores.interface import OrderStore, StoreTransaction
from ordercore.stores.postgresql import PostgreSQLOrderStore, PostgreSQLTransaction
from ordercore.stores.sqlite import SQLiteOrderStore, SQLiteTransaction

__all__ = [
    # Abstract base classes
    "OrderStore",
    "StoreTransaction",
    # Concrete implementations
    "InMemoryOrderStore",
    "InMemoryTransaction",
    "SQLiteOrderStore",
    "SQLiteTransaction",
    "PostgreSQLOrderStore",
    "PostgreSQLTransaction",
]
