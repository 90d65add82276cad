"""
TTL cache for warm lookups.

Retrieval embeds every conversation turn; repeated or recent queries are
served from a bounded in-memory cache instead of calling the embedding
backend again.
"""

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import CacheConfig


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached value."""

    value: Any
    created_at: float
    hits: int = 0

    def is_expired(self, ttl: float, now: float) -> bool:
        return now - self.created_at > ttl


class TTLCache:
    """
    In-memory LRU cache with per-entry expiry.

    Features:
    - LRU eviction when max size is reached
    - TTL-based expiration
    - Thread-safe operations
    - Cache statistics

    Example:
        >>> cache = TTLCache(max_size=1000, ttl=3600)
        >>> cache.set(make_key("query", text), vector)
        >>> cache.get(make_key("query", text))
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 3600,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries.
            ttl: Time-to-live in seconds for each entry.
            enabled: Whether caching is enabled.
            clock: Time source, injectable for tests.
        """
        self.max_size = max_size
        self.ttl = ttl
        self.enabled = enabled and max_size > 0
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @classmethod
    def from_config(
        cls,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "TTLCache":
        config = config or CacheConfig()
        return cls(max_size=config.max_size, ttl=config.ttl_seconds, enabled=config.enabled, clock=clock)

    def get(self, key: str) -> Optional[Any]:
        """Cached value for key, or None when missing or expired."""
        if not self.enabled:
            return None

        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self.ttl, self._clock()):
                del self._cache[key]
                self._misses += 1
                return None

            entry.hits += 1
            self._cache.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return

        with self._lock:
            if key in self._cache:
                del self._cache[key]
            while len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._evictions += 1

            self._cache[key] = CacheEntry(value=value, created_at=self._clock())

    def invalidate(self, key: Optional[str] = None) -> int:
        """
        Drop one entry, or every entry when key is None.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            if key is not None:
                return 1 if self._cache.pop(key, None) is not None else 0
            count = len(self._cache)
            self._cache.clear()
            return count

    def prune_expired(self) -> int:
        """Remove all expired entries."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._cache.items() if entry.is_expired(self.ttl, now)]
            for key in expired:
                del self._cache[key]

        if expired:
            logger.debug(f"Pruned {len(expired)} expired cache entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> dict:
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

            return {
                "enabled": self.enabled,
                "size": len(self._cache),
                "max_size": self.max_size,
                "ttl": self.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(hit_rate, 2),
                "evictions": self._evictions,
            }


def make_key(*parts: str) -> str:
    """Stable key for a sequence of strings."""
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
