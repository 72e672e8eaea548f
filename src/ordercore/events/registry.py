"""
Event type registry.

Outbox rows carry an ``event_type`` string and a JSON payload. The
publisher turns them back into typed events through an ``EventRegistry``;
``ordercore.events.orders`` registers its classes in ``default_registry``
with the ``@register_event`` decorator.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from typing import TYPE_CHECKING, Any, TypeVar, overload

if TYPE_CHECKING:
    from ordercore.events.base import DomainEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="DomainEvent")


class EventTypeNotFoundError(KeyError):
    """An outbox row names an event type nobody registered."""

    def __init__(self, event_type: str, known: list[str]) -> None:
        self.event_type = event_type
        self.known = known
        super().__init__(
            f"Unknown event type '{event_type}' (registered: {', '.join(known) or 'none'})"
        )


class DuplicateEventTypeError(ValueError):
    """Two different classes claim the same event type name."""

    def __init__(self, event_type: str, existing: type[DomainEvent], new: type[DomainEvent]) -> None:
        self.event_type = event_type
        super().__init__(
            f"Event type '{event_type}' already belongs to {existing.__name__}, "
            f"not {new.__name__}"
        )


class EventRegistry:
    """
    Maps event type names to ``DomainEvent`` subclasses.

    Registration normally happens at import time; the lock keeps lookups
    from racing a late registration in another thread.
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[DomainEvent]] = {}
        self._lock = threading.Lock()

    def register(self, event_class: type[E], event_type: str | None = None) -> type[E]:
        """
        Register ``event_class`` under ``event_type`` (default: its class name).

        Registering the same class twice is a no-op.

        Raises:
            DuplicateEventTypeError: If the name belongs to another class
        """
        name = event_type or event_class.__name__
        with self._lock:
            existing = self._classes.setdefault(name, event_class)
        if existing is not event_class:
            raise DuplicateEventTypeError(name, existing, event_class)
        logger.debug("Registered event type %s", name)
        return event_class

    def get(self, event_type: str) -> type[DomainEvent]:
        """
        Raises:
            EventTypeNotFoundError: If the type is not registered
        """
        with self._lock:
            event_class = self._classes.get(event_type)
        if event_class is None:
            raise EventTypeNotFoundError(event_type, self.list_types())
        return event_class

    def decode(self, event_type: str, data: str | bytes | Mapping[str, Any]) -> DomainEvent:
        """
        Rebuild a typed event from a stored payload.

        ``data`` is the JSON text from SQLite or the in-memory outbox, or
        the already-decoded mapping a PostgreSQL JSONB column may return.

        Raises:
            EventTypeNotFoundError: If the type is not registered
            pydantic.ValidationError: If the payload does not fit the class
        """
        event_class = self.get(event_type)
        if isinstance(data, str | bytes):
            return event_class.model_validate_json(data)
        return event_class.model_validate(dict(data))

    def list_types(self) -> list[str]:
        with self._lock:
            return sorted(self._classes)

    def clear(self) -> None:
        with self._lock:
            self._classes.clear()

    def __len__(self) -> int:
        return len(self._classes)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._classes

    def __iter__(self) -> Iterator[str]:
        return iter(self.list_types())


default_registry = EventRegistry()


@overload
def register_event(event_class: type[E]) -> type[E]: ...


@overload
def register_event(
    event_class: None = None,
    *,
    event_type: str | None = None,
    registry: EventRegistry | None = None,
) -> Callable[[type[E]], type[E]]: ...


def register_event(
    event_class: type[E] | None = None,
    *,
    event_type: str | None = None,
    registry: EventRegistry | None = None,
) -> type[E] | Callable[[type[E]], type[E]]:
    """Class decorator; usable bare or as ``@register_event(registry=...)``."""
    target = registry if registry is not None else default_registry

    def decorator(cls: type[E]) -> type[E]:
        return target.register(cls, event_type)

    return decorator(event_class) if event_class is not None else decorator


__all__ = [
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "register_event",
]
