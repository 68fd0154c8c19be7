"""
Geocode Cache

Bounded in-memory store for geocoding results.
    - max_size entries; the oldest entry is evicted when full
    - fixed TTL, checked lazily on read and swept by cleanup()
    - hit/miss counters for the stats endpoint

Recency is insertion order: a hit re-inserts the entry as newest.
"""

import hashlib
import logging
import time
from collections import OrderedDict
from typing import Callable, NamedTuple, Optional

from .types import SOURCE_CACHE, GeoLocation

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 24 * 60 * 60

KIND_POSTAL = "postal"
KIND_ADDRESS = "address"


class _CacheEntry(NamedTuple):
    location: GeoLocation
    expires_at: float


def cache_key(kind: str, query: str) -> str:
    """
    Cache key for a query. Namespaced by kind so the same text looked up
    as a postal code and as an address never collide.
    """
    normalized = f"{kind}:{(query or '').strip().lower()}"
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


class GeocodeCache:

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[GeoLocation]:
        entry = self._entries.get(key)

        if entry is None or self._clock() >= entry.expires_at:
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return entry.location.with_source(SOURCE_CACHE)

    def set(self, key: str, location: GeoLocation) -> None:
        if key in self._entries:
            del self._entries[key]

        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Geocode cache full, evicted {evicted}")

        self._entries[key] = _CacheEntry(location, self._clock() + self.ttl_seconds)

    def cleanup(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total > 0 else 0.0,
        }
