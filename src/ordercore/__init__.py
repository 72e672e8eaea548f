"""
ordercore - Order lifecycle and payment reconciliation core.

This library provides:
- Cart, checkout and the order state machine with atomic stock reservation
- Payment intents and webhook-driven payment confirmation (Stripe)
- Refund workflow against the payment provider
- Append-only audit trail with typed before/after snapshots
- Transactional outbox feeding notifications and invoicing
- In-Memory, SQLite and PostgreSQL store backends
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ordercore-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Audit trail
from ordercore.audit import (
    AuditLogEntry,
    AuditLogService,
    OrderSnapshot,
    PaymentSnapshot,
    ProductSnapshot,
    parse_snapshot,
)

# Cache
from ordercore.cache import Cache, NullCache, TTLCache

# Configuration
from ordercore.config import OrderCoreConfig

# Events
from ordercore.events import (
    DomainEvent,
    EventRegistry,
    InvoiceRequested,
    LowStockDetected,
    OrderConfirmed,
    OrderShipped,
    OrderStatusChanged,
    RefundProcessed,
    default_registry,
    register_event,
)
from ordercore.exceptions import (
    AuditLogNotFoundError,
    CartItemNotFoundError,
    DuplicateOrderReferenceError,
    DuplicatePaymentError,
    DuplicateWebhookEventError,
    EmptyCartError,
    ForbiddenError,
    InsufficientStockError,
    InvalidAddressError,
    InvalidOrderStateError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NoSuccessfulPaymentError,
    NotFoundError,
    OrderCoreError,
    OrderNotFoundError,
    OutboxUnavailableError,
    PaymentAlreadyCapturedError,
    PaymentNotFoundError,
    ProductNotFoundError,
    ProviderError,
    ValidationError,
    WebhookVerificationError,
    error_payload,
)

# Records
from ordercore.models import (
    Address,
    Cart,
    CartItem,
    Order,
    OrderItem,
    Payment,
    Product,
    WebhookEventRecord,
)

# Notifications and outbox delivery
from ordercore.notifications import (
    InvoiceGenerator,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
    OutboxPublisher,
    PublishResult,
)

# Observability
from ordercore.observability import OTEL_AVAILABLE

# Payments
from ordercore.payments import (
    InMemoryPaymentProvider,
    PaymentIntent,
    PaymentProvider,
    PaymentWebhookHandler,
    ProviderEvent,
    Refund,
    StripePaymentProvider,
    WebhookOutcome,
)

# Outbox repositories
from ordercore.repositories import (
    InMemoryOutboxRepository,
    OutboxEntry,
    OutboxRepository,
    OutboxStats,
    PostgreSQLOutboxRepository,
    SQLiteOutboxRepository,
)

# Services
from ordercore.services import (
    CartService,
    CartView,
    CheckoutResult,
    InventoryService,
    OrderService,
    PaymentIntentResult,
    RefundService,
)

# Stores
from ordercore.stores import (
    InMemoryOrderStore,
    OrderStore,
    PostgreSQLOrderStore,
    SQLiteOrderStore,
    StoreTransaction,
)
from ordercore.types import (
    ORDER_TRANSITIONS,
    ActorType,
    AuditAction,
    EntityType,
    OrderStatus,
    PaymentStatus,
    is_valid_transition,
)

__all__ = [
    "__version__",
    # Configuration
    "OrderCoreConfig",
    # Types
    "ORDER_TRANSITIONS",
    "ActorType",
    "AuditAction",
    "EntityType",
    "OrderStatus",
    "PaymentStatus",
    "is_valid_transition",
    # Records
    "Address",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "Payment",
    "Product",
    "WebhookEventRecord",
    # Services
    "CartService",
    "CartView",
    "CheckoutResult",
    "InventoryService",
    "OrderService",
    "PaymentIntentResult",
    "RefundService",
    # Payments
    "InMemoryPaymentProvider",
    "PaymentIntent",
    "PaymentProvider",
    "PaymentWebhookHandler",
    "ProviderEvent",
    "Refund",
    "StripePaymentProvider",
    "WebhookOutcome",
    # Stores
    "InMemoryOrderStore",
    "OrderStore",
    "PostgreSQLOrderStore",
    "SQLiteOrderStore",
    "StoreTransaction",
    # Outbox
    "InMemoryOutboxRepository",
    "OutboxEntry",
    "OutboxRepository",
    "OutboxStats",
    "PostgreSQLOutboxRepository",
    "SQLiteOutboxRepository",
    # Notifications
    "InvoiceGenerator",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationKind",
    "OutboxPublisher",
    "PublishResult",
    # Events
    "DomainEvent",
    "EventRegistry",
    "InvoiceRequested",
    "LowStockDetected",
    "OrderConfirmed",
    "OrderShipped",
    "OrderStatusChanged",
    "RefundProcessed",
    "default_registry",
    "register_event",
    # Audit
    "AuditLogEntry",
    "AuditLogService",
    "OrderSnapshot",
    "PaymentSnapshot",
    "ProductSnapshot",
    "parse_snapshot",
    # Cache
    "Cache",
    "NullCache",
    "TTLCache",
    # Observability
    "OTEL_AVAILABLE",
    # Exceptions
    "OrderCoreError",
    "NotFoundError",
    "InvalidStateError",
    "ForbiddenError",
    "ValidationError",
    "ProviderError",
    "InsufficientStockError",
    "OrderNotFoundError",
    "PaymentNotFoundError",
    "ProductNotFoundError",
    "CartItemNotFoundError",
    "AuditLogNotFoundError",
    "InvalidAddressError",
    "EmptyCartError",
    "InvalidOrderStateError",
    "InvalidStatusTransitionError",
    "PaymentAlreadyCapturedError",
    "NoSuccessfulPaymentError",
    "WebhookVerificationError",
    "DuplicateOrderReferenceError",
    "DuplicateWebhookEventError",
    "DuplicatePaymentError",
    "OutboxUnavailableError",
    "error_payload",
]
