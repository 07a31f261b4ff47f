"""A small TTL cache owned by whoever needs one.

Nothing in the engine keeps a module-level cache; callers construct a
`TTLCache` and pass it down (see `SemanticRanker`).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Key/value store whose entries expire after a per-entry TTL (seconds).

    Args:
        default_ttl: TTL used by put() when none is given.
        clock:       Returns the current time in seconds. Injectable for tests.
    """

    def __init__(self, default_ttl: float = 300.0, clock: Callable[[], float] = time.time) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._items: dict[K, tuple[V, float]] = {}

    def get(self, key: K) -> V | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires = item
        if self._clock() >= expires:
            del self._items[key]
            return None
        return value

    def put(self, key: K, value: V, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._items[key] = (value, self._clock() + ttl)

    def expire_at(self, key: K) -> float | None:
        """Absolute expiry time of `key`, or None if absent."""
        item = self._items.get(key)
        return item[1] if item is not None else None

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        stale = [k for k, (_, expires) in self._items.items() if now >= expires]
        for k in stale:
            del self._items[k]
        return len(stale)

    def clear(self) -> None:
        self._items.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._items)
