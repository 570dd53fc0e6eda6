"""Cache backend implementations.

Defines the CacheBackend ABC and two concrete implementations:
- RedisCacheBackend: Remote backend using redis.asyncio, one round trip per call
- InMemoryCacheBackend: Bounded LRU store with per-entry expiry

Both backends speak raw bytes. A miss is always reported as ``None``;
storage and transport faults are raised as CacheBackendError so callers can
tell the two apart without knowing which backend they hold.

The factory function get_cache_backend() selects the backend from settings.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

log = structlog.get_logger(__name__)


class CacheBackendError(Exception):
    """A backend could not complete a get or set (not a miss)."""


class CacheBackend(ABC):
    """Abstract interface all cache backends must implement."""

    @abstractmethod
    async def get(self, key: bytes) -> bytes | None:
        """Return the stored value for key, or None if absent or expired.

        Raises:
            CacheBackendError: the store could not be queried.
        """

    @abstractmethod
    async def set(self, key: bytes, value: bytes, ttl_seconds: int) -> None:
        """Store value under key, replacing any prior value.

        Raises:
            CacheBackendError: the value could not be written.
        """

    async def delete(self, key: bytes) -> None:
        """Remove key from the cache (no-op if absent)."""

    async def info(self) -> dict[str, Any]:
        """Return backend-specific info/stats dict."""
        return {}

    async def close(self) -> None:
        """Release any resources held by the backend."""


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCacheBackend(CacheBackend):
    """Remote cache backend backed by Redis.

    Values are stored verbatim as bytes (``decode_responses=False``).
    ``ttl_seconds <= 0`` stores the value without an expiry. The client is
    created lazily on first call so construction never touches the network.
    """

    def __init__(self, redis_url: str = "", client: aioredis.Redis | None = None) -> None:
        self._redis_url = redis_url
        self._client: aioredis.Redis | None = client

    def _get_client(self) -> aioredis.Redis:
        """Return or create the Redis client (lazy init)."""
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=False)
        return self._client

    async def get(self, key: bytes) -> bytes | None:
        try:
            raw = await self._get_client().get(key)
        except RedisError as exc:
            raise CacheBackendError(f"redis get failed: {exc}") from exc
        # redis-py signals a missing key with None
        if raw is None:
            return None
        return bytes(raw)

    async def set(self, key: bytes, value: bytes, ttl_seconds: int) -> None:
        try:
            if ttl_seconds > 0:
                await self._get_client().set(key, value, ex=ttl_seconds)
            else:
                await self._get_client().set(key, value)
        except RedisError as exc:
            raise CacheBackendError(f"redis set failed: {exc}") from exc

    async def delete(self, key: bytes) -> None:
        try:
            await self._get_client().delete(key)
        except RedisError as exc:
            raise CacheBackendError(f"redis delete failed: {exc}") from exc

    async def info(self) -> dict[str, Any]:
        try:
            client = self._get_client()
            redis_info = await client.info()
            dbsize = await client.dbsize()
            return {
                "backend": "redis",
                "connected": True,
                "keyspace_hits": redis_info.get("keyspace_hits", 0),
                "keyspace_misses": redis_info.get("keyspace_misses", 0),
                "used_memory_human": redis_info.get("used_memory_human", "unknown"),
                "db_size": dbsize,
            }
        except RedisError as exc:
            return {
                "backend": "redis",
                "connected": False,
                "error": str(exc),
            }

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _CacheEntry:
    """Single entry stored by InMemoryCacheBackend."""

    __slots__ = ("value", "expires_at")

    def __init__(self, value: bytes, ttl_seconds: int) -> None:
        self.value = value
        # ttl <= 0: never expires
        self.expires_at: float | None = (
            time.monotonic() + ttl_seconds if ttl_seconds > 0 else None
        )

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class InMemoryCacheBackend(CacheBackend):
    """Bounded in-process LRU cache with per-entry expiry.

    Evicts least recently used entries once either ``max_entries`` or
    ``max_bytes`` (key + value lengths) would be exceeded. A single value
    larger than ``max_bytes`` is rejected with CacheBackendError.
    ``ttl_seconds <= 0`` stores the value without an expiry.

    Guarded by a threading.Lock: every critical section is plain dict work,
    so it is safe across event loops and worker threads alike.
    """

    def __init__(self, max_entries: int = 10_000, max_bytes: int = 64 * 1024 * 1024) -> None:
        if max_entries < 1 or max_bytes < 1:
            raise ValueError("max_entries and max_bytes must be positive")
        self._max_entries = max_entries
        self._max_bytes = max_bytes
        self._store: OrderedDict[bytes, _CacheEntry] = OrderedDict()
        self._size = 0
        self._lock = threading.Lock()
        # Simple hit/miss counters for stats
        self._hits: int = 0
        self._misses: int = 0
        self._evictions: int = 0

    async def get(self, key: bytes) -> bytes | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None or entry.is_expired:
                if entry is not None:
                    self._remove(key)
                self._misses += 1
                return None
            self._store.move_to_end(key)
            self._hits += 1
            return entry.value

    async def set(self, key: bytes, value: bytes, ttl_seconds: int) -> None:
        needed = len(key) + len(value)
        if needed > self._max_bytes:
            raise CacheBackendError(
                f"entry of {needed} bytes exceeds cache capacity of {self._max_bytes} bytes"
            )
        with self._lock:
            if key in self._store:
                self._remove(key)
            while self._store and (
                len(self._store) >= self._max_entries or self._size + needed > self._max_bytes
            ):
                oldest = next(iter(self._store))
                self._remove(oldest)
                self._evictions += 1
            self._store[key] = _CacheEntry(value, ttl_seconds)
            self._size += needed

    async def delete(self, key: bytes) -> None:
        with self._lock:
            if key in self._store:
                self._remove(key)

    async def info(self) -> dict[str, Any]:
        with self._lock:
            # Prune expired before counting
            for key in [k for k, v in self._store.items() if v.is_expired]:
                self._remove(key)

            total_requests = self._hits + self._misses
            hit_rate = self._hits / total_requests if total_requests > 0 else 0.0

            return {
                "backend": "memory",
                "connected": True,
                "total_keys": len(self._store),
                "total_bytes": self._size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(hit_rate, 4),
            }

    def _remove(self, key: bytes) -> None:
        """Drop key and release its bytes. Caller holds the lock."""
        entry = self._store.pop(key)
        self._size -= len(key) + len(entry.value)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def get_cache_backend(settings: Any) -> CacheBackend:
    """Return the appropriate CacheBackend for the given settings.

    Uses Redis when a redis_url is configured, otherwise a bounded
    in-process cache sized from the memory_* settings.

    Args:
        settings: replaycache Settings instance.

    Returns:
        A CacheBackend implementation ready for use.
    """
    redis_url: str = getattr(settings, "redis_url", "")

    if redis_url:
        log.info("cache.backend_selected", backend="redis", url=redis_url)
        return RedisCacheBackend(redis_url)

    log.info("cache.backend_selected", backend="memory")
    return InMemoryCacheBackend(
        max_entries=getattr(settings, "memory_max_entries", 10_000),
        max_bytes=getattr(settings, "memory_max_bytes", 64 * 1024 * 1024),
    )
