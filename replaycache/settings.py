"""
Middleware configuration via pydantic-settings.

Settings are loaded from environment variables prefixed with
``REPLAYCACHE_`` (or a .env file in dev). The middleware itself only ever
sees the immutable CacheConfig derived from these values.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLAYCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Caching policy
    # ------------------------------------------------------------------ #
    ttl_seconds: int = Field(
        default=60,
        description="Time to live of stored responses, in seconds",
    )
    methods: list[str] = Field(
        default=["GET"],
        description="HTTP methods whose responses are cached",
    )
    status_codes: list[int] = Field(
        default=[200, 404],
        description="Status codes eligible for storage",
    )
    ignore_query: bool = Field(
        default=False,
        description="Leave the query string out of the cache key",
    )
    max_body_bytes: int | None = Field(
        default=None,
        ge=0,
        description="Responses with larger bodies are served but never stored",
    )
    status_header: str | None = Field(
        default=None,
        description="Header name reporting HIT/MISS/SKIP to clients (e.g. X-Cache)",
    )

    # ------------------------------------------------------------------ #
    # Backends
    # ------------------------------------------------------------------ #
    redis_url: str = Field(
        default="",
        description="Redis connection URL. Empty selects the in-process cache.",
    )
    memory_max_entries: int = Field(default=10_000, ge=1)
    memory_max_bytes: int = Field(
        default=64 * 1024 * 1024,
        ge=1,
        description="Upper bound on the summed size of in-process entries",
    )

    # ------------------------------------------------------------------ #
    # Logging
    # ------------------------------------------------------------------ #
    log_level: str = "INFO"
    json_logs: bool = False

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, value: list[str]) -> list[str]:
        return [method.upper() for method in value]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
