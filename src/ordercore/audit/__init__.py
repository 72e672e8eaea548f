"""Audit trail: typed snapshots and read access to the log."""

from ordercore.audit.snapshots import (
    AuditLogEntry,
    AuditSnapshot,
    OrderLineSnapshot,
    OrderSnapshot,
    PaymentSnapshot,
    ProductSnapshot,
    parse_snapshot,
)
from ordercore.audit.trail import AuditLogService

__all__ = [
    "AuditLogEntry",
    "AuditLogService",
    "AuditSnapshot",
    "OrderLineSnapshot",
    "OrderSnapshot",
    "PaymentSnapshot",
    "ProductSnapshot",
    "parse_snapshot",
]
