"""Captured HTTP responses and their stored encoding.

A CacheEntry is the (status, headers, body) triple recorded from a live
response. ``encode()`` turns it into the opaque bytes handed to a backend;
``CacheEntry.decode()`` validates and reverses that, raising
CorruptEntryError for anything it does not recognise so callers can treat
the stored value as a miss.

Encoding (internal, versioned):
    {"v": 1, "status": 200, "headers": [["Content-Type", "text/plain"], ...],
     "body": "<base64>"}

Header names and values are kept as latin-1 strings exactly as the
application sent them, so name case and multi-value order round-trip.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

from starlette.types import Message, Send

ENCODING_VERSION = 1

_CONTENT_LENGTH = "content-length"


class CorruptEntryError(ValueError):
    """Stored bytes are not a valid encoded CacheEntry."""


@dataclass(frozen=True)
class CacheEntry:
    status_code: int
    headers: tuple[tuple[str, str], ...]
    body: bytes

    # ------------------------------------------------------------------ #
    # Codec
    # ------------------------------------------------------------------ #

    def encode(self) -> bytes:
        payload = {
            "v": ENCODING_VERSION,
            "status": self.status_code,
            "headers": [[name, value] for name, value in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
        }
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> CacheEntry:
        """Parse bytes produced by encode().

        Raises:
            CorruptEntryError: data is not a well-formed version-1 entry.
        """
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
            raise CorruptEntryError(f"entry is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise CorruptEntryError("entry is not an object")
        if payload.get("v") != ENCODING_VERSION:
            raise CorruptEntryError(f"unsupported entry version: {payload.get('v')!r}")

        status = payload.get("status")
        if type(status) is not int or not 100 <= status <= 999:
            raise CorruptEntryError(f"invalid status code: {status!r}")

        headers = _decode_headers(payload.get("headers"))

        body = payload.get("body")
        if not isinstance(body, str):
            raise CorruptEntryError("body is missing")
        try:
            raw_body = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CorruptEntryError(f"body is not valid base64: {exc}") from exc

        return cls(status_code=status, headers=headers, body=raw_body)

    # ------------------------------------------------------------------ #
    # Replay
    # ------------------------------------------------------------------ #

    def raw_headers(self) -> list[tuple[bytes, bytes]]:
        """ASGI headers with Content-Length matching the stored body."""
        headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in self.headers
            if name.lower() != _CONTENT_LENGTH
        ]
        headers.append((b"content-length", str(len(self.body)).encode("latin-1")))
        return headers

    def to_messages(self, extra_headers: list[tuple[bytes, bytes]] | None = None) -> list[Message]:
        headers = self.raw_headers()
        if extra_headers:
            headers.extend(extra_headers)
        return [
            {"type": "http.response.start", "status": self.status_code, "headers": headers},
            {"type": "http.response.body", "body": self.body, "more_body": False},
        ]

    async def replay(self, send: Send, extra_headers: list[tuple[bytes, bytes]] | None = None) -> None:
        """Write the stored response onto an ASGI send channel."""
        for message in self.to_messages(extra_headers):
            await send(message)


def _decode_headers(value: Any) -> tuple[tuple[str, str], ...]:
    if not isinstance(value, list):
        raise CorruptEntryError("headers are missing")
    headers: list[tuple[str, str]] = []
    for item in value:
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not all(isinstance(part, str) for part in item)
        ):
            raise CorruptEntryError(f"malformed header: {item!r}")
        headers.append((item[0], item[1]))
    return tuple(headers)
