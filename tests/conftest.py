"""
Shared test fixtures for pytest.

Provides common backends and apps for all test modules:
- fake_settings: Test configuration (in-memory backend, defaults otherwise)
- memory_backend: Fresh InMemoryCacheBackend
- spy_backend: Backend recording get/set calls, with injectable failures
- handler_calls: Counter of downstream endpoint invocations
- make_app: Build a Starlette app wrapped in CacheMiddleware
- make_client: httpx AsyncClient bound to an app via ASGITransport
"""

from __future__ import annotations

from collections import Counter
from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from replaycache.backend import CacheBackend, CacheBackendError, InMemoryCacheBackend
from replaycache.config import CacheConfig
from replaycache.middleware import CacheMiddleware
from replaycache.settings import Settings, get_settings


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so test overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_settings() -> Settings:
    """Test settings with safe defaults (no Redis)."""
    return Settings(
        ttl_seconds=60,
        redis_url="",
        memory_max_entries=100,
        memory_max_bytes=1024 * 1024,
    )


# ------------------------------------------------------------------ #
# Backends
# ------------------------------------------------------------------ #


class SpyBackend(CacheBackend):
    """In-memory backend that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.inner = InMemoryCacheBackend()
        self.gets: list[bytes] = []
        self.sets: list[tuple[bytes, bytes, int]] = []
        self.get_error: Exception | None = None
        self.set_error: Exception | None = None

    async def get(self, key: bytes) -> bytes | None:
        self.gets.append(key)
        if self.get_error is not None:
            raise self.get_error
        return await self.inner.get(key)

    async def set(self, key: bytes, value: bytes, ttl_seconds: int) -> None:
        self.sets.append((key, value, ttl_seconds))
        if self.set_error is not None:
            raise self.set_error
        await self.inner.set(key, value, ttl_seconds)

    async def put_raw(self, key: bytes, value: bytes) -> None:
        """Seed the store without recording a set() call."""
        await self.inner.set(key, value, 60)

    def fail_gets(self, message: str = "connection refused") -> None:
        self.get_error = CacheBackendError(message)

    def fail_sets(self, message: str = "connection refused") -> None:
        self.set_error = CacheBackendError(message)


@pytest.fixture
def memory_backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def spy_backend() -> SpyBackend:
    return SpyBackend()


# ------------------------------------------------------------------ #
# Apps & clients
# ------------------------------------------------------------------ #


@pytest.fixture
def handler_calls() -> Counter:
    """Counts endpoint invocations keyed by path."""
    return Counter()


@pytest.fixture
def make_app(handler_calls: Counter) -> Callable[..., Starlette]:
    """Factory building a small Starlette app behind CacheMiddleware.

    Routes:
        /items       GET/POST  200 "ok" (echoes ?q= when present)
        /missing     GET       404 JSON
        /fail        GET       500 "fail"
        /boom        GET       raises RuntimeError before responding
        /multi       GET       200 with repeated Set-Cookie-like headers
    """

    async def items(request: Request) -> Response:
        handler_calls[request.url.path] += 1
        q = request.query_params.get("q")
        return PlainTextResponse("ok" if q is None else f"ok:{q}")

    async def missing(request: Request) -> Response:
        handler_calls[request.url.path] += 1
        return JSONResponse({"detail": "not found"}, status_code=404)

    async def fail(request: Request) -> Response:
        handler_calls[request.url.path] += 1
        return PlainTextResponse("fail", status_code=500)

    async def boom(request: Request) -> Response:
        handler_calls[request.url.path] += 1
        raise RuntimeError("handler exploded")

    async def multi(request: Request) -> Response:
        handler_calls[request.url.path] += 1
        response = PlainTextResponse("multi")
        response.headers.append("X-Tag", "first")
        response.headers.append("X-Tag", "second")
        return response

    def _make(backend: CacheBackend, config: CacheConfig | None = None) -> Starlette:
        app = Starlette(
            routes=[
                Route("/items", items, methods=["GET", "POST"]),
                Route("/missing", missing, methods=["GET"]),
                Route("/fail", fail, methods=["GET"]),
                Route("/boom", boom, methods=["GET"]),
                Route("/multi", multi, methods=["GET"]),
            ]
        )
        app.add_middleware(CacheMiddleware, backend=backend, config=config)
        return app

    return _make


@pytest_asyncio.fixture
async def make_client() -> AsyncGenerator[Callable[[Any], httpx.AsyncClient], None]:
    """Factory returning httpx clients bound to an ASGI app; closed on teardown."""
    clients: list[httpx.AsyncClient] = []

    def _make(app: Any) -> httpx.AsyncClient:
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://test",
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
