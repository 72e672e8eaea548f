"""
Audit log entries with typed before/after snapshots.

Snapshots are a tagged union keyed by ``entity_type``: an ORDER entry
carries ``OrderSnapshot`` payloads, a PAYMENT entry ``PaymentSnapshot``
payloads and a PRODUCT entry ``ProductSnapshot`` payloads. Reading audit
history back goes through the same discriminator, so a stored row either
parses into the right model or fails loudly.

Example:
    >>> entry = AuditLogEntry(
    ...     entity_type=EntityType.ORDER,
    ...     entity_id=order.id,
    ...     action=AuditAction.STATUS_UPDATE,
    ...     performed_by="admin:42",
    ...     actor_type=ActorType.ADMIN,
    ...     before=OrderSnapshot(status=OrderStatus.PROCESSING),
    ...     after=OrderSnapshot(status=OrderStatus.SHIPPED),
    ... )
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from ordercore.types import ActorType, AuditAction, EntityType, OrderStatus, PaymentStatus


class OrderLineSnapshot(BaseModel):
    """A frozen order line as recorded at creation."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int
    price: Decimal


class OrderSnapshot(BaseModel):
    """Order fields touched by an audited operation; unset fields are None."""

    model_config = ConfigDict(frozen=True)

    entity_type: Literal["ORDER"] = "ORDER"
    status: OrderStatus | None = None
    order_reference: str | None = None
    total: Decimal | None = None
    tracking_number: str | None = None
    shipping_carrier: str | None = None
    refund_amount: Decimal | None = None
    refund_id: str | None = None
    items: list[OrderLineSnapshot] | None = None


class PaymentSnapshot(BaseModel):
    """Payment fields touched by an audited operation."""

    model_config = ConfigDict(frozen=True)

    entity_type: Literal["PAYMENT"] = "PAYMENT"
    status: PaymentStatus | None = None
    provider_ref: str | None = None
    paid_at: datetime | None = None
    refunded_at: datetime | None = None


class ProductSnapshot(BaseModel):
    """Inventory fields touched by an audited operation."""

    model_config = ConfigDict(frozen=True)

    entity_type: Literal["PRODUCT"] = "PRODUCT"
    stock: int | None = None
    low_stock_threshold: int | None = None


AuditSnapshot = Annotated[
    OrderSnapshot | PaymentSnapshot | ProductSnapshot,
    Field(discriminator="entity_type"),
]

_snapshot_adapter: TypeAdapter[OrderSnapshot | PaymentSnapshot | ProductSnapshot] = TypeAdapter(
    AuditSnapshot
)


def parse_snapshot(data: dict[str, Any] | str | None) -> OrderSnapshot | PaymentSnapshot | ProductSnapshot | None:
    """
    Parse a stored snapshot back into its typed model.

    Args:
        data: A dict, a JSON string or None

    Returns:
        The snapshot model selected by ``entity_type``, or None

    Raises:
        pydantic.ValidationError: If the payload has no known entity_type
    """
    if data is None:
        return None
    if isinstance(data, str):
        return _snapshot_adapter.validate_json(data)
    return _snapshot_adapter.validate_python(data)


class AuditLogEntry(BaseModel):
    """
    One append-only audit row.

    Written in the same transaction as the state change it records.
    Never updated or deleted by the order core.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    entity_type: EntityType
    entity_id: UUID
    action: AuditAction
    performed_by: str
    actor_type: ActorType
    before: AuditSnapshot | None = None
    after: AuditSnapshot | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _snapshots_match_entity(self) -> AuditLogEntry:
        for label, snapshot in (("before", self.before), ("after", self.after)):
            if snapshot is not None and snapshot.entity_type != self.entity_type.value:
                raise ValueError(
                    f"{label} snapshot is {snapshot.entity_type} but entry is {self.entity_type}"
                )
        return self

    def snapshot_json(self, which: Literal["before", "after"]) -> str | None:
        """Serialize one snapshot to JSON for SQL storage."""
        snapshot = self.before if which == "before" else self.after
        return snapshot.model_dump_json() if snapshot is not None else None


__all__ = [
    "AuditLogEntry",
    "AuditSnapshot",
    "OrderLineSnapshot",
    "OrderSnapshot",
    "PaymentSnapshot",
    "ProductSnapshot",
    "parse_snapshot",
]
