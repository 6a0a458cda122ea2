"""In-memory result cache with TTL and LRU eviction.

Render and analysis results are keyed by the SHA-256 of the source buffer's
content hash plus the request parameters, so identical requests on identical
audio are computed once. The cache is an optimisation only: a miss (or an
expired entry) always falls through to a full computation.

Usage::

    from infrastructure.cache import ResultCache

    cache = ResultCache(max_size=128, ttl_seconds=3600)
    key = cache.make_key(buffer.content_hash(), "render", request.cache_parts())
    hit = cache.get(key)
    if hit is None:
        hit = render(buffer, request)
        cache.put(key, hit)
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any

from infrastructure.metrics import record_cache_hit, record_cache_miss

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Cached value with metadata."""

    value: Any
    timestamp: float  # Unix timestamp when cached


class ResultCache:
    """
    Thread-safe result cache with TTL and LRU eviction.

    Args:
        max_size: Maximum number of entries (default: 128)
        ttl_seconds: Time-to-live in seconds (default: 3600 = 1 hour)
    """

    def __init__(self, max_size: int = 128, ttl_seconds: float = 3600.0) -> None:
        """Initialize cache with size and TTL limits."""
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()

    @staticmethod
    def make_key(*parts: object) -> str:
        """
        Generate a cache key from arbitrary parameter values.

        Parts are joined by their repr, so tuples of floats and strings give
        stable keys across calls.

        Returns:
            Hex-encoded SHA256 hash
        """
        raw = "|".join(repr(part) for part in parts)
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Any | None:
        """
        Retrieve a cached value if available and not expired.

        Args:
            key: Key from make_key()

        Returns:
            Cached value if found and valid, None otherwise
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                record_cache_miss()
                return None

            age = time.time() - entry.timestamp
            if age > self.ttl_seconds:
                del self._cache[key]
                record_cache_miss()
                return None

            self._cache.move_to_end(key)

        record_cache_hit()
        logger.debug("ResultCache HIT: %s", key[:12])
        return entry.value

    def put(self, key: str, value: Any) -> None:
        """
        Store a value with the current timestamp.

        Evicts the least-recently-used entry if the cache is full.

        Args:
            key: Key from make_key()
            value: Value to cache
        """
        with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._cache.popitem(last=False)

            self._cache[key] = CacheEntry(value=value, timestamp=time.time())
            self._cache.move_to_end(key)

        logger.debug("ResultCache SET: %s", key[:12])

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        """Return current number of cached entries."""
        with self._lock:
            return len(self._cache)

    def evict_expired(self) -> int:
        """
        Remove all expired entries based on TTL.

        Returns:
            Number of entries evicted
        """
        now = time.time()

        with self._lock:
            expired_keys = [
                key
                for key, entry in self._cache.items()
                if (now - entry.timestamp) > self.ttl_seconds
            ]
            for key in expired_keys:
                del self._cache[key]

        if expired_keys:
            logger.info("ResultCache: evicted %d expired entries", len(expired_keys))
        return len(expired_keys)
