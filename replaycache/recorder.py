"""ASGI send decorator that records the response it forwards.

ResponseRecorder stands in for the server's ``send`` callable. Every message
is forwarded to the real channel first, unchanged, and only then copied into
an in-memory buffer, so recording never delays the client.
"""

from __future__ import annotations

import structlog
from starlette.types import Message, Send

from replaycache.entry import CacheEntry

log = structlog.get_logger(__name__)


class ResponseRecorder:
    """Forward ASGI response messages while capturing status, headers and body.

    ``extra_headers`` are appended to the forwarded start message only; they
    are never part of the recorded entry.

    When ``max_body_bytes`` is set and the body grows beyond it, buffering
    stops (forwarding continues) and result() returns None.
    """

    def __init__(
        self,
        send: Send,
        *,
        max_body_bytes: int | None = None,
        extra_headers: list[tuple[bytes, bytes]] | None = None,
    ) -> None:
        self._send = send
        self._max_body_bytes = max_body_bytes
        self._extra_headers = extra_headers or []
        self._status_code: int | None = None
        self._headers: list[tuple[str, str]] = []
        self._chunks: list[bytes] = []
        self._body_size = 0
        self._complete = False
        self._overflow = False
        self._finalized = False
        self._result: CacheEntry | None = None

    async def __call__(self, message: Message) -> None:
        message_type = message["type"]
        if message_type == "http.response.start":
            headers = list(message.get("headers", []))
            if self._extra_headers:
                message = {**message, "headers": headers + self._extra_headers}
            await self._send(message)
            self._status_code = int(message["status"])
            self._headers = [
                (bytes(name).decode("latin-1"), bytes(value).decode("latin-1"))
                for name, value in headers
            ]
            return

        await self._send(message)
        if message_type == "http.response.body":
            self._capture(message.get("body", b""))
            if not message.get("more_body", False):
                self._complete = True

    def _capture(self, chunk: bytes) -> None:
        if self._overflow or not chunk:
            return
        self._body_size += len(chunk)
        if self._max_body_bytes is not None and self._body_size > self._max_body_bytes:
            log.debug("cache.body_too_large", limit=self._max_body_bytes)
            self._overflow = True
            self._chunks.clear()
            return
        self._chunks.append(chunk)

    def result(self) -> CacheEntry | None:
        """Materialise the recorded response.

        The buffer is released on the first call; later calls return the
        same entry. Returns None when no complete response was captured:
        nothing was sent, the body was cut short, or it overflowed
        ``max_body_bytes``.
        """
        if self._finalized:
            return self._result
        self._finalized = True

        if self._status_code is not None and self._complete and not self._overflow:
            self._result = CacheEntry(
                status_code=self._status_code,
                headers=tuple(self._headers),
                body=b"".join(self._chunks),
            )
        self._chunks.clear()
        return self._result
