"""
Cache Module

Bounded, time-expiring in-process cache shared by the embedding service and
the retrieval engine.

Strategy:
- Keys are tuples whose first element is the partition (a tenant id or a
  namespace such as "embedding"), so a whole partition can be invalidated
- Entries expire ttl_seconds after they were written
- When full, the least recently used entry is evicted
- NullCache has the same interface and never stores anything (for tests)
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Thread-safe LRU cache with per-entry expiry.

    Example:
        cache = TTLCache(max_size=10_000, ttl_seconds=86400)
        cache.set(("tenant-a", "abc123"), results)
        hit = cache.get(("tenant-a", "abc123"))
        cache.invalidate_partition("tenant-a")
    """

    def __init__(
        self,
        max_size: int = 10_000,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry {evicted!r}")

    def invalidate_partition(self, partition: Hashable) -> int:
        """
        Drop every entry whose key starts with the given partition.

        Returns:
            Number of entries removed
        """
        with self._lock:
            stale = [
                key for key in self._entries
                if isinstance(key, tuple) and key and key[0] == partition
            ]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.debug(f"Invalidated {len(stale)} cache entries for {partition!r}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
            }

    def __len__(self) -> int:
        return len(self._entries)


class NullCache:
    """Cache that never stores anything."""

    def get(self, key: Hashable) -> Optional[Any]:
        return None

    def set(self, key: Hashable, value: Any) -> None:
        pass

    def invalidate_partition(self, partition: Hashable) -> int:
        return 0

    def clear(self) -> None:
        pass

    def stats(self) -> dict:
        return {"size": 0, "max_size": 0, "ttl_seconds": 0, "hits": 0, "misses": 0}

    def __len__(self) -> int:
        return 0


def create_cache(config=None):
    """Build a cache from a CacheConfig (NullCache when disabled)."""
    if config is None:
        from config.settings import get_settings
        config = get_settings().cache

    if not config.enabled:
        logger.info("Caching disabled")
        return NullCache()

    logger.info(
        f"Cache initialized: max_size={config.max_size}, ttl={config.ttl_seconds}s"
    )
    return TTLCache(max_size=config.max_size, ttl_seconds=config.ttl_seconds)
