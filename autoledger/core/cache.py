"""
In-process read cache with TTL expiry.

Only listing endpoints use it (``GET /investors``, ``GET /groups``).  Values
that feed a ledger decision, such as remaining credit during a reservation or
an admin's group during approval, are always read from the database.

- Keys are namespaced by a prefix (``"investors:"``, ``"groups:"``); every
  write to an entity invalidates its whole namespace.
- Entries expire after ``CACHE_TTL`` seconds even if an invalidation is missed.
- When ``CACHE_MAX_SIZE`` is reached the oldest entry is evicted.

The event loop is single-threaded, so plain dict operations need no locking.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from autoledger.core.config import settings

logger = logging.getLogger(__name__)


class CacheEntry:
    """A cached value and the monotonic time it was stored."""

    __slots__ = ("value", "created_at")

    def __init__(self, value: Any):
        self.value = value
        self.created_at = time.monotonic()

    def is_expired(self, ttl: float) -> bool:
        return (time.monotonic() - self.created_at) > ttl


class TTLCache:
    """
    Dict-backed cache with TTL expiry and oldest-first eviction.

    Parameters
    ----------
    ttl : float
        Seconds an entry stays valid.
    max_size : int
        Entry limit; inserting beyond it evicts the oldest entry.
    enabled : bool
        When False every read misses and every write is dropped.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        max_size: int = 1000,
        enabled: bool = True,
    ):
        self._store: Dict[str, CacheEntry] = {}
        self._ttl = ttl
        self._max_size = max_size
        self._enabled = enabled
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or ``None`` on a miss or expired entry."""
        if not self._enabled:
            return None

        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._ttl):
            del self._store[key]
            self._misses += 1
            logger.debug("Cache EXPIRED: %s", key)
            return None

        self._hits += 1
        logger.debug("Cache HIT: %s", key)
        return entry.value

    def set(self, key: str, value: Any) -> None:
        if not self._enabled:
            return

        if len(self._store) >= self._max_size and key not in self._store:
            oldest_key = next(iter(self._store))
            del self._store[oldest_key]
            logger.debug("Cache EVICTED (max_size): %s", oldest_key)

        self._store[key] = CacheEntry(value)
        logger.debug("Cache SET: %s", key)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for ``key``, calling ``loader`` on a miss.

        The loaded value is stored before being returned.  Loader exceptions
        propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        self.set(key, value)
        return value

    def invalidate(self, *prefixes: str) -> int:
        """
        Drop every entry whose key starts with one of ``prefixes``.

        Services call this after each successful write, e.g.
        ``cache.invalidate("investors:")`` after a credit-limit edit.
        Returns the number of entries removed.
        """
        if not self._enabled:
            return 0

        keys_to_remove = [
            k for k in self._store if any(k.startswith(p) for p in prefixes)
        ]
        for k in keys_to_remove:
            del self._store[k]

        if keys_to_remove:
            logger.debug(
                "Cache INVALIDATED %d entries matching prefixes %s",
                len(keys_to_remove),
                prefixes,
            )
        return len(keys_to_remove)

    def clear(self) -> None:
        count = len(self._store)
        self._store.clear()
        if count:
            logger.debug("Cache CLEARED (%d entries)", count)

    def get_stats(self) -> dict:
        """Hit/miss counters for the health-check endpoint."""
        total = self._hits + self._misses
        return {
            "enabled": self._enabled,
            "size": len(self._store),
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{(self._hits / total * 100):.1f}%" if total > 0 else "N/A",
        }


# ── Global cache instance ──
cache = TTLCache(
    ttl=settings.CACHE_TTL,
    max_size=settings.CACHE_MAX_SIZE,
    enabled=settings.CACHE_ENABLED,
)
