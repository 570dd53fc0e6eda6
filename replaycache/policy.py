"""Cache decisions for a single request.

Three independent questions plus key derivation:
- is_cacheable:   may this request read or write the cache at all?
- should_refresh: must an existing entry be bypassed and replaced?
- is_storable:    may the response just produced be stored?
- cache_key:      under which key?

Each has a default driven by CacheConfig; the optional callables on the
config replace (never augment) the default for their own decision only.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode

from starlette.requests import Request

from replaycache.config import CacheConfig

BODY_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})


def may_have_body(method: str) -> bool:
    """True for methods that customarily carry a request body."""
    return method.upper() in BODY_METHODS


def encode_query(query_string: str) -> str:
    """Re-encode a raw query string with keys sorted.

    Values keep their original order within a key and spaces become ``+``.
    No other canonicalisation is applied. Percent-escapes are decoded and
    re-encoded as latin-1 so every byte survives, valid UTF-8 or not.
    """
    pairs = parse_qsl(query_string, keep_blank_values=True, encoding="latin-1")
    pairs.sort(key=lambda pair: pair[0])
    return urlencode(pairs, encoding="latin-1")


class CachePolicy:
    """Stateless decision helpers bound to one CacheConfig."""

    def __init__(self, config: CacheConfig) -> None:
        self._config = config

    def is_cacheable(self, request: Request) -> bool:
        if self._config.cacheable is not None:
            return bool(self._config.cacheable(request))
        return request.method in self._config.methods

    def should_refresh(self, request: Request) -> bool:
        if self._config.refresh is None:
            return False
        return bool(self._config.refresh(request))

    def is_storable(self, status_code: int) -> bool:
        # Applies even when a custom cacheable predicate is configured.
        return status_code in self._config.status_codes

    def cache_key(self, request: Request) -> bytes:
        if self._config.key_func is not None:
            key = self._config.key_func(request)
            return key.encode("utf-8") if isinstance(key, str) else bytes(key)

        base = f"{request.method}|{request.url.path}"
        if not self._config.ignore_query:
            base += "|" + encode_query(request.url.query)
        return base.encode("utf-8")
