"""
TTL snapshot cache for hot path optimization.

Holds a keyed, in-memory view of a backing store. Unlike a per-entry TTL
cache, validity is tracked for the whole view: it is fresh for ``ttl``
seconds after the last successful full load and stale afterwards, so a
reader either sees a complete recent load or triggers a reload.

All access happens on one event loop between suspension points, so no
locking is needed.
"""

import time
import logging
from typing import Any, Callable, Dict, Generic, Hashable, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    A keyed view that expires as a whole.

    Attributes:
        ttl: Seconds a full load stays valid
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, ttl: float = 300.0, clock: Optional[Callable[[], float]] = None):
        """
        Initialize the cache.

        Args:
            ttl: Time-to-live in seconds for a full load (default: 5 minutes)
            clock: Time source, defaults to time.monotonic
        """
        self.ttl = ttl
        self.clock = clock or time.monotonic
        self._entries: Dict[Hashable, V] = {}
        self._loaded_at: Optional[float] = None
        self._hits = 0
        self._misses = 0
        self._loads = 0

    def is_stale(self) -> bool:
        """True if never loaded or the last load is older than the TTL."""
        if self._loaded_at is None:
            return True
        return self.clock() - self._loaded_at > self.ttl

    def replace_all(self, items: Iterable[V], key: Callable[[V], Hashable]) -> int:
        """
        Replace the whole view with a fresh load and restart the TTL.

        Returns:
            Number of entries loaded
        """
        self._entries = {key(item): item for item in items}
        self._loaded_at = self.clock()
        self._loads += 1
        return len(self._entries)

    def mark_fresh(self) -> None:
        """Restart the TTL without changing contents."""
        self._loaded_at = self.clock()

    def get(self, key: Hashable) -> Optional[V]:
        value = self._entries.get(key)
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = value

    def invalidate(self, key: Hashable) -> bool:
        """
        Remove a specific key from the cache.

        Returns:
            True if key was present and removed, False otherwise
        """
        return self._entries.pop(key, None) is not None

    def values(self) -> List[V]:
        return list(self._entries.values())

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0
        age = None if self._loaded_at is None else self.clock() - self._loaded_at
        return {
            "size": len(self._entries),
            "ttl": self.ttl,
            "age_seconds": age,
            "stale": self.is_stale(),
            "loads": self._loads,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate
        }
