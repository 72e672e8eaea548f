"""
Observability utilities for ordercore.

Tracing is composition based: components receive a ``Tracer`` (or build
one with ``create_tracer``) and wrap operations in ``tracer.span(...)``.
OpenTelemetry is an optional dependency; without it every component falls
back to ``NullTracer``.

Example:
    >>> from ordercore.observability import ATTR_ORDER_ID, create_tracer
    >>>
    >>> class MyStore:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from ordercore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_ACTOR_TYPE,
    ATTR_CUSTOMER_ID,
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_KIND,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_ITEM_COUNT,
    ATTR_ORDER_ID,
    ATTR_ORDER_PREVIOUS_STATUS,
    ATTR_ORDER_REFERENCE,
    ATTR_ORDER_STATUS,
    ATTR_OUTBOX_ID,
    ATTR_PAYMENT_AMOUNT_MINOR,
    ATTR_PAYMENT_PROVIDER,
    ATTR_PAYMENT_PROVIDER_REF,
    ATTR_PRODUCT_ID,
    ATTR_STOCK_DELTA,
    ATTR_WEBHOOK_EVENT_ID,
    ATTR_WEBHOOK_EVENT_TYPE,
)
from ordercore.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    SpanKind,
    Tracer,
    create_tracer,
)

__all__ = [
    # Availability
    "OTEL_AVAILABLE",
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "RecordedSpan",
    "SpanKind",
    "create_tracer",
    # Attributes
    "ATTR_ACTOR_ID",
    "ATTR_ACTOR_TYPE",
    "ATTR_CUSTOMER_ID",
    "ATTR_DB_NAME",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_ERROR_KIND",
    "ATTR_EVENT_COUNT",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_ITEM_COUNT",
    "ATTR_ORDER_ID",
    "ATTR_ORDER_PREVIOUS_STATUS",
    "ATTR_ORDER_REFERENCE",
    "ATTR_ORDER_STATUS",
    "ATTR_OUTBOX_ID",
    "ATTR_PAYMENT_AMOUNT_MINOR",
    "ATTR_PAYMENT_PROVIDER",
    "ATTR_PAYMENT_PROVIDER_REF",
    "ATTR_PRODUCT_ID",
    "ATTR_STOCK_DELTA",
    "ATTR_WEBHOOK_EVENT_ID",
    "ATTR_WEBHOOK_EVENT_TYPE",
]
