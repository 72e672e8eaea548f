"""
Base class for order-core domain events.

An event records a committed state transition that something outside
the transaction reacts to: a confirmation email, an invoice, a restock
alert. Events are written to the outbox by the operation that causes
them and delivered afterwards by ``OutboxPublisher``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DomainEvent(BaseModel):
    """
    Immutable outbox payload.

    ``event_type`` defaults to the class name and is the key the outbox
    stores and the registry resolves. Subclasses declare ``aggregate_type``
    ('Order' or 'Product') and their payload fields.

    Attributes:
        event_id: Unique identifier, also the outbox deduplication key
        event_type: Registered type name
        event_version: Payload schema version
        occurred_at: When the transition happened (UTC)
        aggregate_id: Order or product the event is about
        aggregate_type: 'Order' or 'Product'
        actor_id: ``performed_by`` of the operation, if any

    Example:
        >>> event = OrderShipped(aggregate_id=order.id, tracking_number="1Z", shipping_carrier="UPS")
        >>> event.event_type
        'OrderShipped'
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: str = ""
    event_version: int = Field(default=1, ge=1)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    aggregate_id: UUID
    aggregate_type: str
    actor_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_event_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("event_type"):
            return {**data, "event_type": cls.__name__}
        return data

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible dict (UUIDs, datetimes and Decimals as strings)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainEvent:
        return cls.model_validate(data)

    def __str__(self) -> str:
        return f"{self.event_type}({self.aggregate_type} {self.aggregate_id})"


__all__ = ["DomainEvent"]
