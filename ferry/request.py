"""
UploadRequest - multipart ingestion for one ASGI request.

Wires the pipeline together for a single request::

    receive -> ChunkReader -> LimitEnforcer -> MultipartDemultiplexer
            -> FieldMap (UploadHandles owned by an UploadLifecycle)
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from ._datastructures import Headers, ParsedContentType
from ._uploads import FieldMap
from .config import ParserLimits
from .faults import MalformedMultipart, UnsupportedMediaType
from .lifecycle import UploadLifecycle
from .multipart import MultipartDemultiplexer
from .reader import ChunkReader, LimitEnforcer
from .tempfiles import UploadTempDir

logger = logging.getLogger("ferry.request")


class UploadRequest:
    """
    Request wrapper that parses multipart/form-data bodies.

    Args:
        scope: ASGI scope dict
        receive: ASGI receive callable
        limits: Parser limits
        lifecycle: Owner of the temporary files (a new one by default)
        temp_dir: Temporary directory (process-wide one by default)
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[[], Awaitable[dict]],
        *,
        limits: Optional[ParserLimits] = None,
        lifecycle: Optional[UploadLifecycle] = None,
        temp_dir: Optional[UploadTempDir] = None,
    ):
        self.scope = scope
        self._receive = receive
        self.limits = limits or ParserLimits()
        self.lifecycle = lifecycle or UploadLifecycle()
        self.temp_dir = temp_dir or UploadTempDir.default()

        self._headers: Optional[Headers] = None
        self._fields: Optional[FieldMap] = None
        self.bytes_received = 0

    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        return self.scope.get("path", "/")

    @property
    def headers(self) -> Headers:
        if self._headers is None:
            self._headers = Headers(raw=list(self.scope.get("headers", [])))
        return self._headers

    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise MalformedMultipart("Invalid Content-Length header", value=value)

    def is_multipart(self) -> bool:
        parsed = ParsedContentType.parse(self.content_type())
        return parsed is not None and parsed.is_multipart_form

    async def form(self) -> FieldMap:
        """
        Parse the multipart body (once; later calls return the cached map).

        Returns:
            FieldMap with plain values and UploadHandles

        Raises:
            UnsupportedMediaType: If Content-Type is not multipart/form-data
            MalformedMultipart: On protocol violations or truncated bodies
            PayloadTooLarge: If the body exceeds ``max_body_bytes``
            ReadTimeout: If a single read waits past ``read_timeout_ms``
            StorageUnavailable: If temporary files cannot be written
        """
        if self._fields is not None:
            return self._fields

        ct = self.content_type()
        parsed = ParsedContentType.parse(ct)
        if parsed is None or not parsed.is_multipart_form:
            raise UnsupportedMediaType(f"Expected multipart/form-data, got {ct}")

        boundary = parsed.boundary
        if not boundary:
            raise MalformedMultipart("No boundary in multipart Content-Type")

        enforcer = LimitEnforcer(
            ChunkReader.from_limits(self._receive, self.limits),
            self.limits.max_body_bytes,
        )
        enforcer.check_declared_length(self.content_length())

        demux = MultipartDemultiplexer(
            boundary,
            lifecycle=self.lifecycle,
            temp_dir=self.temp_dir.path,
            limits=self.limits,
        )
        try:
            self._fields = await demux.parse(enforcer)
        finally:
            self.bytes_received = enforcer.total

        logger.info(
            "Parsed multipart body for %s %s: %d field(s), %d file(s), %d bytes",
            self.method, self.path, len(self._fields),
            sum(1 for _ in self._fields.files()), self.bytes_received,
        )
        return self._fields

    async def cleanup(self) -> None:
        """Delete every temporary file still owned by this request."""
        await self.lifecycle.cleanup()
