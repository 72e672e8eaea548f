"""
Backend fixtures for integration tests.

Overrides the root ``store`` fixture so the service fixtures from
tests/conftest.py run against real databases. PostgreSQL cases are
skipped unless ``ORDERCORE_TEST_POSTGRES_URL`` is set.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text

from ordercore.stores import OrderStore, PostgreSQLOrderStore, SQLiteOrderStore

POSTGRES_URL = os.environ.get("ORDERCORE_TEST_POSTGRES_URL")

ALL_TABLES = (
    "event_outbox",
    "webhook_events",
    "audit_logs",
    "payments",
    "order_items",
    "orders",
    "cart_items",
    "carts",
    "addresses",
    "products",
)


async def _truncate_all(store: PostgreSQLOrderStore) -> None:
    """Start each PostgreSQL test from empty tables."""
    async with store.engine.begin() as conn:
        await conn.execute(text(f"TRUNCATE TABLE {', '.join(ALL_TABLES)} CASCADE"))


@pytest_asyncio.fixture(
    params=[
        pytest.param("sqlite", marks=pytest.mark.sqlite),
        pytest.param("postgresql", marks=pytest.mark.postgres),
    ]
)
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[OrderStore, None]:
    """An initialized store for each database backend."""
    if request.param == "sqlite":
        sqlite = SQLiteOrderStore(str(tmp_path / "orders.db"), enable_tracing=False)
        await sqlite.initialize()
        yield sqlite
        await sqlite.close()
        return

    if not POSTGRES_URL:
        pytest.skip("ORDERCORE_TEST_POSTGRES_URL not set")
    postgres = PostgreSQLOrderStore.from_url(POSTGRES_URL, enable_tracing=False)
    await postgres.initialize()
    await _truncate_all(postgres)
    yield postgres
    await postgres.close()
