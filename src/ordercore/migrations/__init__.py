"""
SQL schemas for the ordercore store backends.

Tables:
    - products, addresses, carts, cart_items: inventory and cart state
    - orders, order_items, payments: the order aggregate
    - audit_logs: append-only audit trail
    - webhook_events: processed provider webhook ids
    - event_outbox: transactional outbox for notifications and invoicing

Supported backends:
    - postgresql (default)
    - sqlite

Usage:
    from ordercore.migrations import get_schema, get_statements

    sql = get_schema("sqlite")

    async with engine.begin() as conn:
        for statement in get_statements("postgresql"):
            await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

BackendName = Literal["postgresql", "sqlite"]

_SCHEMAS_DIR = Path(__file__).parent / "schemas"


def get_schema_path(backend: BackendName = "postgresql") -> Path:
    """
    Get the path to the schema file for a backend.

    Raises:
        ValueError: If the backend is not supported
    """
    path = _SCHEMAS_DIR / f"{backend}.sql"
    if not path.exists():
        raise ValueError(
            f"Unsupported backend '{backend}'. Available backends: {list_backends()}"
        )
    return path


def get_schema(backend: BackendName = "postgresql") -> str:
    """Get the full schema SQL for a backend."""
    return get_schema_path(backend).read_text()


def get_statements(backend: BackendName = "postgresql") -> list[str]:
    """
    Split the schema into single statements.

    Drivers that prepare statements (asyncpg) reject multi-statement
    strings, so the PostgreSQL store executes these one at a time.
    """
    lines = [
        line for line in get_schema(backend).splitlines() if not line.lstrip().startswith("--")
    ]
    return [chunk.strip() for chunk in "\n".join(lines).split(";") if chunk.strip()]


def list_backends() -> list[str]:
    """List backends that ship a schema."""
    return sorted(path.stem for path in _SCHEMAS_DIR.glob("*.sql"))


__all__ = [
    "BackendName",
    "get_schema",
    "get_schema_path",
    "get_statements",
    "list_backends",
]
