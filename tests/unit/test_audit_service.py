"""
Unit tests for AuditLogService.
"""

from uuid import uuid4

import pytest

from ordercore.exceptions import AuditLogNotFoundError
from ordercore.types import AuditAction, EntityType


class TestAuditLogService:
    """Reading the audit trail back."""

    @pytest.mark.asyncio
    async def test_newest_first(self, audit, place_order, orders, customer_id, make_product):
        product = await make_product()
        order = await place_order(customer_id, [(product, 1)])
        await orders.cancel_order(order.id, customer_id)

        entries = await audit.list_entries(entity_type=EntityType.ORDER, entity_id=order.id)

        assert [e.action for e in entries] == [
            AuditAction.ORDER_CANCELLED,
            AuditAction.ORDER_CREATED,
        ]

    @pytest.mark.asyncio
    async def test_filters_and_limit(self, audit, inventory, place_order, customer_id, make_product):
        product = await make_product(stock=5)
        await place_order(customer_id, [(product, 1)])
        await inventory.adjust_stock(product.id, 1, "admin:1")

        assert len(await audit.list_entries()) == 2
        assert len(await audit.list_entries(limit=1)) == 1
        products = await audit.list_entries(entity_type=EntityType.PRODUCT)
        assert [e.entity_id for e in products] == [product.id]

    @pytest.mark.asyncio
    async def test_get_entry(self, audit, inventory, make_product):
        product = await make_product()
        await inventory.adjust_stock(product.id, 2, "admin:1")
        entry = (await audit.list_entries())[0]

        fetched = await audit.get_entry(entry.id)

        assert fetched == entry

    @pytest.mark.asyncio
    async def test_get_missing_entry(self, audit):
        with pytest.raises(AuditLogNotFoundError):
            await audit.get_entry(uuid4())

    def test_read_only(self, audit):
        """The audit service exposes no way to change history."""
        public = {name for name in dir(audit) if not name.startswith("_")}
        assert public == {"list_entries", "get_entry"}
