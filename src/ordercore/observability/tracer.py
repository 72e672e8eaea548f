"""
Tracers for order-core components.

Every store, service and provider takes a ``Tracer`` in its constructor and
wraps its operations in ``tracer.span(...)``. OpenTelemetry is optional:
``create_tracer`` returns an ``OpenTelemetryTracer`` when the API package is
importable and tracing is enabled, and a ``NullTracer`` otherwise.

When an ``OrderCoreError`` leaves a span, its ``kind`` is attached to the
span as ``ordercore.error.kind`` so failed checkouts can be told apart from
out-of-stock or forbidden requests without parsing messages.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("ordercore.order.cancel", {ATTR_ORDER_ID: str(order_id)}):
    ...     ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol, runtime_checkable

from ordercore.exceptions import OrderCoreError
from ordercore.observability.attributes import ATTR_ERROR_KIND

if TYPE_CHECKING:
    from opentelemetry.trace import Span

try:
    from opentelemetry import trace as otel_trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


class SpanKind(Enum):
    """INTERNAL for service and store work, CLIENT for payment-provider calls."""

    INTERNAL = "internal"
    CLIENT = "client"


@runtime_checkable
class Tracer(Protocol):
    """Creates spans around order-core operations."""

    @property
    def enabled(self) -> bool:
        """True if spans are recorded somewhere."""
        ...

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> AbstractContextManager[Span | None]:
        """
        Open a span for the duration of the ``with`` block.

        Args:
            name: Span name, ``ordercore.<area>.<operation>``
            attributes: Initial span attributes
            kind: Span kind

        Returns:
            Context manager yielding the span, or None for non-recording tracers
        """
        ...


class NullTracer:
    """Tracer used when tracing is disabled or OpenTelemetry is absent."""

    @property
    def enabled(self) -> bool:
        return False

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Iterator[None]:
        yield None


class OpenTelemetryTracer:
    """
    Tracer backed by the globally configured OpenTelemetry provider.

    Args:
        tracer_name: Instrumentation scope name (typically ``__name__``)
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = otel_trace.get_tracer(tracer_name)

    @property
    def enabled(self) -> bool:
        return True

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Iterator[Span]:
        otel_kind = (
            otel_trace.SpanKind.CLIENT if kind is SpanKind.CLIENT else otel_trace.SpanKind.INTERNAL
        )
        with self._tracer.start_as_current_span(
            name, kind=otel_kind, attributes=attributes or {}
        ) as span:
            try:
                yield span
            except OrderCoreError as e:
                span.set_attribute(ATTR_ERROR_KIND, e.kind)
                raise


class RecordedSpan(NamedTuple):
    """A span captured by ``MockTracer``."""

    name: str
    attributes: dict[str, Any] | None
    kind: SpanKind = SpanKind.INTERNAL
    error_kind: str | None = None


class MockTracer:
    """
    Tracer for tests; records every span in ``spans``.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("ordercore.order.get"):
        ...     pass
        >>> tracer.span_names
        ['ordercore.order.get']
    """

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @property
    def enabled(self) -> bool:
        return True

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Iterator[None]:
        index = len(self.spans)
        self.spans.append(RecordedSpan(name, attributes, kind))
        try:
            yield None
        except OrderCoreError as e:
            self.spans[index] = self.spans[index]._replace(error_kind=e.kind)
            raise

    @property
    def span_names(self) -> list[str]:
        return [span.name for span in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer for a component.

    Args:
        name: Instrumentation scope name (typically ``__name__``)
        enable_tracing: The component's tracing switch

    Returns:
        OpenTelemetryTracer if enabled and available, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "SpanKind",
    "Tracer",
    "create_tracer",
]
