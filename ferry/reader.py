"""
Body reading - bounded chunk reads from an ASGI transport.

Provides:
- ChunkReader: pulls body bytes in increments of at most ``read_chunk_bytes``,
  with a timeout applied to every individual wait on the transport
- LimitEnforcer: running byte count that rejects the body as soon as it
  would exceed ``max_body_bytes``
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from .config import ParserLimits
from .faults import ClientDisconnect, PayloadTooLarge, ReadTimeout

logger = logging.getLogger("ferry.reader")

Receive = Callable[[], Awaitable[dict]]


class ChunkReader:
    """
    Reads the request body from an ASGI ``receive`` callable.

    ASGI messages larger than ``read_chunk_bytes`` are re-sliced; the
    remainder is buffered for the next call. Reading advances the
    transport and cannot be repeated.
    """

    def __init__(
        self,
        receive: Receive,
        *,
        read_chunk_bytes: int,
        read_timeout: float,
    ):
        self._receive = receive
        self.read_chunk_bytes = read_chunk_bytes
        self.read_timeout = read_timeout
        self._pending = b""
        self._eof = False
        self.bytes_read = 0

    @classmethod
    def from_limits(cls, receive: Receive, limits: ParserLimits) -> "ChunkReader":
        return cls(
            receive,
            read_chunk_bytes=limits.read_chunk_bytes,
            read_timeout=limits.read_timeout,
        )

    @property
    def at_eof(self) -> bool:
        return self._eof and not self._pending

    async def _receive_message(self) -> dict:
        try:
            message = await asyncio.wait_for(self._receive(), timeout=self.read_timeout)
        except asyncio.TimeoutError:
            logger.debug("No body data within %.3fs after %d bytes", self.read_timeout, self.bytes_read)
            raise ReadTimeout(
                "Timed out waiting for request body",
                timeout_ms=int(self.read_timeout * 1000),
                bytes_read=self.bytes_read,
            )

        if message["type"] == "http.disconnect":
            raise ClientDisconnect("Client disconnected", bytes_read=self.bytes_read)
        return message

    async def read_chunk(self) -> Optional[bytes]:
        """
        Read the next chunk of at most ``read_chunk_bytes``.

        Returns:
            Chunk bytes, or None at end of stream

        Raises:
            ReadTimeout: If the transport stays silent past the timeout
            ClientDisconnect: If the client goes away mid-body
        """
        while not self._pending:
            if self._eof:
                return None

            message = await self._receive_message()
            if message["type"] != "http.request":
                continue

            self._pending = message.get("body", b"")
            if not message.get("more_body", False):
                self._eof = True

        chunk = self._pending[:self.read_chunk_bytes]
        self._pending = self._pending[self.read_chunk_bytes:]
        self.bytes_read += len(chunk)
        return chunk

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read_chunk()
            if chunk is None:
                break
            yield chunk


class LimitEnforcer:
    """
    Wraps a ChunkReader and enforces ``max_body_bytes``.

    The check happens before a chunk is returned, so no byte past the
    limit ever reaches the parser or the disk.
    """

    def __init__(self, reader: ChunkReader, max_body_bytes: int):
        self.reader = reader
        self.max_body_bytes = max_body_bytes
        self.total = 0

    def check_declared_length(self, content_length: Optional[int]) -> None:
        """Reject early when the declared Content-Length is already too large."""
        if content_length is not None and content_length > self.max_body_bytes:
            raise PayloadTooLarge(
                "Request body exceeds maximum size",
                max_allowed=self.max_body_bytes,
                declared=content_length,
            )

    async def read_chunk(self) -> Optional[bytes]:
        chunk = await self.reader.read_chunk()
        if chunk is None:
            return None

        if self.total + len(chunk) > self.max_body_bytes:
            raise PayloadTooLarge(
                "Request body exceeds maximum size",
                max_allowed=self.max_body_bytes,
                actual=self.total + len(chunk),
            )

        self.total += len(chunk)
        return chunk

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read_chunk()
            if chunk is None:
                break
            yield chunk
