"""
Side-effect delivery: notification and invoice collaborators and the
outbox publisher that feeds them.
"""

from ordercore.notifications.interface import (
    InvoiceGenerator,
    LoggingInvoiceGenerator,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
    RecordingInvoiceGenerator,
    RecordingNotificationDispatcher,
)
from ordercore.notifications.publisher import OutboxPublisher, PublishResult

__all__ = [
    "InvoiceGenerator",
    "LoggingInvoiceGenerator",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationKind",
    "OutboxPublisher",
    "PublishResult",
    "RecordingInvoiceGenerator",
    "RecordingNotificationDispatcher",
]
