"""
Read access to the audit trail.

Audit rows are written by the services inside the transaction that makes
the change. This service only reads them back; it has no update or
delete API.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from ordercore.audit.snapshots import AuditLogEntry
from ordercore.exceptions import AuditLogNotFoundError
from ordercore.observability import Tracer, create_tracer
from ordercore.types import EntityType

if TYPE_CHECKING:
    from ordercore.stores.interface import OrderStore

logger = logging.getLogger(__name__)


class AuditLogService:
    """
    Query the append-only audit log.

    Example:
        >>> audit = AuditLogService(store)
        >>> history = await audit.list_entries(entity_type=EntityType.ORDER, entity_id=order.id)
    """

    def __init__(
        self,
        store: OrderStore,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def list_entries(
        self,
        entity_type: EntityType | None = None,
        entity_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Audit entries newest first, optionally filtered by entity."""
        with self._tracer.span("ordercore.audit.list", {"limit": limit}):
            async with self._store.transaction() as tx:
                return await tx.list_audit_entries(
                    entity_type=entity_type, entity_id=entity_id, limit=limit
                )

    async def get_entry(self, entry_id: UUID) -> AuditLogEntry:
        """
        Get one audit entry.

        Raises:
            AuditLogNotFoundError: If no entry has this id
        """
        with self._tracer.span("ordercore.audit.get", {"ordercore.audit.id": str(entry_id)}):
            async with self._store.transaction() as tx:
                entry = await tx.get_audit_entry(entry_id)
            if entry is None:
                raise AuditLogNotFoundError(entry_id)
            return entry


__all__ = ["AuditLogService"]
