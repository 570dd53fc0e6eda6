"""Response caching middleware for ASGI applications.

Serves recorded responses from a CacheBackend when one exists for the
request's key, and otherwise lets the request through while recording the
response for reuse.

Per-request flow:
- Not cacheable (method / custom predicate)  -> pass through untouched
- Refresh forced                              -> treated as a miss
- Entry found and decodes                     -> replayed, app never called
- Miss, backend error, or corrupt entry       -> app called via a recorder,
  then the recorded response is stored if its status code is storable

The cache is an optimisation only: backend and decoding failures are logged
and degrade to "no cache"; exceptions from the wrapped app propagate
unchanged after the storage attempt.

Usage:
    app.add_middleware(CacheMiddleware, backend=InMemoryCacheBackend())
"""

from __future__ import annotations

import structlog
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from replaycache.backend import CacheBackend, get_cache_backend
from replaycache.config import CacheConfig, KeyFunc, RequestPredicate
from replaycache.entry import CacheEntry, CorruptEntryError
from replaycache.policy import CachePolicy, may_have_body
from replaycache.recorder import ResponseRecorder
from replaycache.settings import Settings, get_settings

log = structlog.get_logger(__name__)

HIT = b"HIT"
MISS = b"MISS"
SKIP = b"SKIP"


class CacheMiddleware:
    """Pure ASGI middleware caching whole responses in a CacheBackend.

    Holds no per-request state; the config is read-only and the backend is
    responsible for its own concurrency safety.
    """

    def __init__(
        self,
        app: ASGIApp,
        backend: CacheBackend,
        config: CacheConfig | None = None,
    ) -> None:
        self.app = app
        self._backend = backend
        self._config = config or CacheConfig()
        self._policy = CachePolicy(self._config)
        self._status_header = (
            self._config.status_header.lower().encode("latin-1")
            if self._config.status_header
            else None
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if not self._policy.is_cacheable(request):
            await self.app(scope, receive, self._tagged(send, SKIP))
            return

        if may_have_body(request.method):
            log.warning(
                "cache.body_ignored",
                method=request.method,
                path=request.url.path,
            )

        key = self._policy.cache_key(request)

        if self._policy.should_refresh(request):
            log.debug("cache.refresh_forced", path=request.url.path)
        else:
            entry = await self._lookup(key)
            if entry is not None:
                log.debug("cache.hit", path=request.url.path, status=entry.status_code)
                await entry.replay(send, self._status_headers(HIT))
                return

        recorder = ResponseRecorder(
            send,
            max_body_bytes=self._config.max_body_bytes,
            extra_headers=self._status_headers(MISS),
        )
        try:
            await self.app(scope, receive, recorder)
        except Exception:
            await self._store(key, recorder)
            raise
        await self._store(key, recorder)

    # ------------------------------------------------------------------ #
    # Backend access
    # ------------------------------------------------------------------ #

    async def _lookup(self, key: bytes) -> CacheEntry | None:
        """Fetch and decode the entry for key; every failure reads as a miss."""
        try:
            value = await self._backend.get(key)
        except Exception as exc:
            log.error("cache.backend.get_failed", key=_printable(key), error=str(exc))
            return None

        if value is None:
            log.debug("cache.miss", key=_printable(key))
            return None

        try:
            return CacheEntry.decode(value)
        except CorruptEntryError as exc:
            log.warning("cache.entry_corrupt", key=_printable(key), error=str(exc))
            return None

    async def _store(self, key: bytes, recorder: ResponseRecorder) -> None:
        entry = recorder.result()
        if entry is None:
            return
        if not self._policy.is_storable(entry.status_code):
            log.debug("cache.not_storable", key=_printable(key), status=entry.status_code)
            return

        try:
            await self._backend.set(key, entry.encode(), self._config.ttl_seconds)
        except Exception as exc:
            log.error("cache.backend.set_failed", key=_printable(key), error=str(exc))
            return
        log.debug(
            "cache.stored",
            key=_printable(key),
            status=entry.status_code,
            ttl=self._config.ttl_seconds,
        )

    # ------------------------------------------------------------------ #
    # Status header
    # ------------------------------------------------------------------ #

    def _status_headers(self, value: bytes) -> list[tuple[bytes, bytes]]:
        if self._status_header is None:
            return []
        return [(self._status_header, value)]

    def _tagged(self, send: Send, value: bytes) -> Send:
        if self._status_header is None:
            return send

        extra = self._status_headers(value)

        async def send_with_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                message = {**message, "headers": list(message.get("headers", [])) + extra}
            await send(message)

        return send_with_status


def install_cache(
    app: Starlette,
    settings: Settings | None = None,
    *,
    refresh: RequestPredicate | None = None,
    cacheable: RequestPredicate | None = None,
    key_func: KeyFunc | None = None,
) -> CacheBackend:
    """Wire CacheMiddleware into app from environment settings.

    Returns the selected backend so the caller can close it on shutdown.
    """
    settings = settings or get_settings()
    backend = get_cache_backend(settings)
    config = CacheConfig.from_settings(
        settings,
        refresh=refresh,
        cacheable=cacheable,
        key_func=key_func,
    )
    app.add_middleware(CacheMiddleware, backend=backend, config=config)
    log.info(
        "cache.installed",
        ttl=config.ttl_seconds,
        methods=sorted(config.methods),
        status_codes=sorted(config.status_codes),
        ignore_query=config.ignore_query,
    )
    return backend


def _printable(key: bytes) -> str:
    return key.decode("utf-8", errors="replace")
