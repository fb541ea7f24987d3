"""Per-key TTL cache for last-known-good feed data.

Usage:
    _cache = KeyedCache(ttl=30)

    # Fresh read (respects TTL)
    hit, snapshot = _cache.get(period)

    # Fallback read (any age, for serving stale data)
    snapshot = _cache.get_any(period)
    age = _cache.age(period)

    _cache.set(period, snapshot)
    _cache.invalidate(period)
"""

import time
from typing import Callable, Hashable, Optional


class KeyedCache:
    """TTL-based cache that also keeps expired values as a stale fallback."""

    __slots__ = ("ttl", "_data", "_timestamps", "_clock")

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._data: dict = {}
        self._timestamps: dict = {}
        self._clock = clock

    def get(self, key: Hashable) -> tuple[bool, object]:
        """Return (hit, data) for values younger than the TTL."""
        if key not in self._data:
            return False, None
        if self._clock() - self._timestamps[key] >= self.ttl:
            return False, None
        return True, self._data[key]

    def get_any(self, key: Hashable) -> Optional[object]:
        """Return the cached value regardless of age."""
        return self._data.get(key)

    def set(self, key: Hashable, data: object) -> None:
        self._data[key] = data
        self._timestamps[key] = self._clock()

    def invalidate(self, key: Hashable = None) -> None:
        """Clear one key, or everything when key is None."""
        if key is None:
            self._data.clear()
            self._timestamps.clear()
            return
        self._data.pop(key, None)
        self._timestamps.pop(key, None)

    def age(self, key: Hashable) -> "float | None":
        """Seconds since last set, or None if empty."""
        if key not in self._timestamps:
            return None
        return self._clock() - self._timestamps[key]
