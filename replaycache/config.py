"""Immutable per-middleware cache configuration.

CacheConfig is built once when the middleware is constructed and shared
read-only by every request. Defaults are filled explicitly, field by field.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from starlette.requests import Request

if TYPE_CHECKING:
    from replaycache.settings import Settings

RequestPredicate = Callable[[Request], bool]
KeyFunc = Callable[[Request], bytes]

DEFAULT_TTL = timedelta(minutes=1)
DEFAULT_METHODS = frozenset({"GET"})
DEFAULT_STATUS_CODES = frozenset({200, 404})


@dataclass(frozen=True)
class CacheConfig:
    """Caching rules applied by CacheMiddleware.

    Attributes:
        ttl: Lifetime requested from the backend for each stored entry.
        methods: Methods eligible for caching when ``cacheable`` is unset.
        status_codes: Status codes a finished response must have to be stored.
        ignore_query: Leave the query string out of the default key.
        refresh: When it returns True the stored entry is bypassed and replaced.
        cacheable: Replaces the method check entirely when set.
        key_func: Replaces the default key derivation when set.
        max_body_bytes: Bodies larger than this are served but not stored.
        status_header: Client-visible header carrying HIT/MISS/SKIP.
    """

    ttl: timedelta = DEFAULT_TTL
    methods: frozenset[str] = DEFAULT_METHODS
    status_codes: frozenset[int] = DEFAULT_STATUS_CODES
    ignore_query: bool = False
    refresh: RequestPredicate | None = field(default=None, compare=False)
    cacheable: RequestPredicate | None = field(default=None, compare=False)
    key_func: KeyFunc | None = field(default=None, compare=False)
    max_body_bytes: int | None = None
    status_header: str | None = None

    def __post_init__(self) -> None:
        # Accept any iterable from callers; store normalised frozensets.
        object.__setattr__(self, "methods", frozenset(m.upper() for m in self.methods))
        object.__setattr__(self, "status_codes", frozenset(int(c) for c in self.status_codes))
        if self.max_body_bytes is not None and self.max_body_bytes < 0:
            raise ValueError("max_body_bytes must be >= 0")

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        refresh: RequestPredicate | None = None,
        cacheable: RequestPredicate | None = None,
        key_func: KeyFunc | None = None,
    ) -> CacheConfig:
        """Build a config from environment settings plus optional overrides."""
        return cls(
            ttl=timedelta(seconds=settings.ttl_seconds),
            methods=frozenset(settings.methods),
            status_codes=frozenset(settings.status_codes),
            ignore_query=settings.ignore_query,
            refresh=refresh,
            cacheable=cacheable,
            key_func=key_func,
            max_body_bytes=settings.max_body_bytes,
            status_header=settings.status_header,
        )
