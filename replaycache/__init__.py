"""HTTP response caching middleware for ASGI applications.

Public API:
    CacheMiddleware       - ASGI middleware replaying/recording responses
    install_cache         - Wire the middleware into an app from Settings
    CacheConfig           - Immutable caching rules (TTL, methods, overrides)
    CachePolicy           - Per-request cache decisions and key derivation

    CacheBackend          - Abstract base for all backends
    CacheBackendError     - Backend transport/storage failure
    InMemoryCacheBackend  - Bounded in-process LRU backend
    RedisCacheBackend     - Redis-backed remote backend
    get_cache_backend     - Factory: selects backend from settings

    CacheEntry            - Recorded (status, headers, body) triple
    CorruptEntryError     - Stored bytes failed to decode
    ResponseRecorder      - ASGI send decorator capturing a response

    Settings              - Environment-driven settings (REPLAYCACHE_*)
    configure_logging     - structlog setup
"""

from replaycache.backend import (
    CacheBackend,
    CacheBackendError,
    InMemoryCacheBackend,
    RedisCacheBackend,
    get_cache_backend,
)
from replaycache.config import CacheConfig
from replaycache.entry import CacheEntry, CorruptEntryError
from replaycache.middleware import CacheMiddleware, install_cache
from replaycache.policy import CachePolicy
from replaycache.recorder import ResponseRecorder
from replaycache.settings import Settings, get_settings
from replaycache.telemetry import configure_logging

__all__ = [
    "CacheMiddleware",
    "install_cache",
    "CacheConfig",
    "CachePolicy",
    "CacheBackend",
    "CacheBackendError",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "get_cache_backend",
    "CacheEntry",
    "CorruptEntryError",
    "ResponseRecorder",
    "Settings",
    "get_settings",
    "configure_logging",
]
