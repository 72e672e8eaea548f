"""
Unit tests for audit log entries and typed snapshots.
"""

from decimal import Decimal
from uuid import uuid4

import pydantic
import pytest

from ordercore.audit import (
    AuditLogEntry,
    OrderLineSnapshot,
    OrderSnapshot,
    PaymentSnapshot,
    ProductSnapshot,
    parse_snapshot,
)
from ordercore.types import ActorType, AuditAction, EntityType, OrderStatus, PaymentStatus


class TestAuditLogEntry:
    """Tests for AuditLogEntry validation."""

    def test_order_entry(self):
        entry = AuditLogEntry(
            entity_type=EntityType.ORDER,
            entity_id=uuid4(),
            action=AuditAction.STATUS_UPDATE,
            performed_by="admin:1",
            actor_type=ActorType.ADMIN,
            before=OrderSnapshot(status=OrderStatus.PROCESSING),
            after=OrderSnapshot(status=OrderStatus.SHIPPED),
        )

        assert entry.before.status == OrderStatus.PROCESSING
        assert entry.created_at.tzinfo is not None

    def test_snapshot_must_match_entity_type(self):
        """A PAYMENT snapshot cannot be attached to an ORDER entry."""
        with pytest.raises(pydantic.ValidationError):
            AuditLogEntry(
                entity_type=EntityType.ORDER,
                entity_id=uuid4(),
                action=AuditAction.MARK_PAYMENT_PAID,
                performed_by="system",
                actor_type=ActorType.SYSTEM,
                after=PaymentSnapshot(status=PaymentStatus.SUCCEEDED),
            )

    def test_entries_are_immutable(self):
        entry = AuditLogEntry(
            entity_type=EntityType.PRODUCT,
            entity_id=uuid4(),
            action=AuditAction.STOCK_ADJUSTMENT,
            performed_by="admin:1",
            actor_type=ActorType.ADMIN,
        )
        with pytest.raises(pydantic.ValidationError):
            entry.performed_by = "someone else"  # type: ignore[misc]

    def test_snapshot_json(self):
        entry = AuditLogEntry(
            entity_type=EntityType.PRODUCT,
            entity_id=uuid4(),
            action=AuditAction.STOCK_ADJUSTMENT,
            performed_by="admin:1",
            actor_type=ActorType.ADMIN,
            after=ProductSnapshot(stock=4),
        )

        assert entry.snapshot_json("before") is None
        assert '"stock":4' in entry.snapshot_json("after")


class TestParseSnapshot:
    """Tests for parse_snapshot."""

    def test_none(self):
        assert parse_snapshot(None) is None

    def test_discriminates_by_entity_type(self):
        assert isinstance(parse_snapshot({"entity_type": "PAYMENT"}), PaymentSnapshot)
        assert isinstance(parse_snapshot({"entity_type": "PRODUCT", "stock": 1}), ProductSnapshot)

    def test_order_snapshot_from_json(self):
        product_id = uuid4()
        original = OrderSnapshot(
            status=OrderStatus.PENDING,
            total=Decimal("20.00"),
            items=[OrderLineSnapshot(product_id=product_id, quantity=2, price=Decimal("10.00"))],
        )

        parsed = parse_snapshot(original.model_dump_json())

        assert parsed == original
        assert parsed.items[0].product_id == product_id

    def test_unknown_entity_type_fails(self):
        with pytest.raises(pydantic.ValidationError):
            parse_snapshot({"entity_type": "CUSTOMER"})
