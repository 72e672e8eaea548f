"""
Read-path cache for order lookups.

The cache is an injected collaborator, never a global. ``TTLCache``
expires entries on a monotonic clock; ``NullCache`` disables caching.
Writers invalidate the key of every order they change, so a cached read
is at most ``ttl`` seconds stale only against writes made outside this
process.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Cache(Protocol):
    """Key/value cache used by the order read path."""

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        ...

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value."""
        ...

    def invalidate(self, key: Hashable) -> None:
        """Drop one key if present."""
        ...

    def clear(self) -> None:
        """Drop every key."""
        ...


class TTLCache:
    """
    In-process cache with per-entry expiry.

    Args:
        ttl: Seconds an entry stays valid
        max_entries: Entries kept before the oldest is evicted
        clock: Monotonic clock (injectable for tests)

    Example:
        >>> cache = TTLCache(ttl=30.0)
        >>> cache.set(order.id, order)
        >>> cache.get(order.id) is order
        True
    """

    def __init__(
        self,
        ttl: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        if self._ttl <= 0:
            return
        if key not in self._entries and len(self._entries) >= self._max_entries:
            # dicts keep insertion order, so the first key is the oldest
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (self._clock() + self._ttl, value)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class NullCache:
    """Cache that stores nothing."""

    def get(self, key: Hashable) -> Any | None:
        return None

    def set(self, key: Hashable, value: Any) -> None:
        pass

    def invalidate(self, key: Hashable) -> None:
        pass

    def clear(self) -> None:
        pass


__all__ = ["Cache", "TTLCache", "NullCache"]
