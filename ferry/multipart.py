"""
Multipart demultiplexer - turns a multipart/form-data stream into a FieldMap.

Boundary scanning is done by python-multipart's callback parser. The
callbacks only record events; after every ``write`` the demultiplexer
applies them in order, streaming file parts to temporary files and
buffering plain parts in memory.

State machine::

    SEEKING_BOUNDARY -> READING_PART_HEADERS -> READING_PART_BODY
        -> PART_COMPLETE -> (SEEKING_BOUNDARY | STREAM_COMPLETE)
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterable, Dict, List, Optional, Tuple, Union

from python_multipart import MultipartParser
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from ._uploads import FieldMap, UploadHandle
from .config import ParserLimits
from .faults import MalformedMultipart, PayloadTooLarge
from .lifecycle import UploadLifecycle
from .tempfiles import TempFileSink

logger = logging.getLogger("ferry.multipart")

DEFAULT_FILE_CONTENT_TYPE = "application/octet-stream"
DEFAULT_FIELD_CONTENT_TYPE = "text/plain"


class DemuxState(Enum):
    SEEKING_BOUNDARY = "seeking_boundary"
    READING_PART_HEADERS = "reading_part_headers"
    READING_PART_BODY = "reading_part_body"
    PART_COMPLETE = "part_complete"
    STREAM_COMPLETE = "stream_complete"


def clean_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a bare name."""
    name = filename.replace("\x00", "")
    name = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if name in ("", ".", ".."):
        return "unnamed"
    return name


def _parse_header(value: Optional[bytes]) -> Tuple[bytes, Dict[bytes, bytes]]:
    """Split a part header into its value and options, from raw bytes."""
    try:
        return parse_options_header(value)
    except ValueError as e:
        raise MalformedMultipart(f"Invalid part header: {e}") from e


class _Part:
    """Parse state of the part currently being read."""

    __slots__ = ("name", "filename", "content_type", "charset", "sink", "buffer", "skip")

    def __init__(self):
        self.name: Optional[str] = None
        self.filename: Optional[str] = None
        self.content_type = DEFAULT_FIELD_CONTENT_TYPE
        self.charset = "utf-8"
        self.sink: Optional[TempFileSink] = None
        self.buffer = bytearray()
        self.skip = False


class MultipartDemultiplexer:
    """
    Streaming multipart/form-data parser.

    File parts become UploadHandles registered with ``lifecycle``; plain
    parts become strings. Feed chunks with :meth:`feed` and call
    :meth:`finish`, or hand a chunk source to :meth:`parse`.

    Args:
        boundary: Boundary from the Content-Type header
        lifecycle: Owner of every temporary file created
        temp_dir: Directory receiving file parts
        limits: Parser limits (header size, part count)
    """

    def __init__(
        self,
        boundary: Union[str, bytes],
        *,
        lifecycle: UploadLifecycle,
        temp_dir: Path,
        limits: Optional[ParserLimits] = None,
    ):
        if isinstance(boundary, str):
            boundary = boundary.encode("latin-1")
        if not boundary:
            raise MalformedMultipart("Empty multipart boundary")

        self.lifecycle = lifecycle
        self.temp_dir = Path(temp_dir)
        self.limits = limits or ParserLimits()
        self.state = DemuxState.SEEKING_BOUNDARY
        self.fields = FieldMap()

        self._events: List[Tuple[str, Any]] = []
        self._part: Optional[_Part] = None
        self._part_count = 0

        # Header accumulation happens synchronously inside the callbacks
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._header_bytes = 0
        self._headers: Dict[str, bytes] = {}

        self._parser = MultipartParser(boundary, callbacks={
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_end": self._on_end,
        })

    # ------------------------------------------------------------------
    # Parser callbacks (sync, record only)
    # ------------------------------------------------------------------

    def _on_part_begin(self):
        self._part_count += 1
        if self._part_count > self.limits.max_parts:
            raise PayloadTooLarge(
                "Too many multipart parts",
                max_allowed=self.limits.max_parts,
                actual=self._part_count,
            )
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._header_bytes = 0
        self._headers = {}
        self._events.append(("begin", None))

    def _count_header_bytes(self, n: int):
        self._header_bytes += n
        if self._header_bytes > self.limits.max_part_header_bytes:
            raise MalformedMultipart(
                "Multipart part headers too large",
                max_allowed=self.limits.max_part_header_bytes,
            )

    def _on_header_field(self, data: bytes, start: int, end: int):
        self._count_header_bytes(end - start)
        self._header_field.extend(data[start:end])

    def _on_header_value(self, data: bytes, start: int, end: int):
        self._count_header_bytes(end - start)
        self._header_value.extend(data[start:end])

    def _on_header_end(self):
        if self._header_field:
            name = self._header_field.decode("latin-1").strip().lower()
            # Values stay raw: browsers send UTF-8 filenames unencoded
            self._headers[name] = bytes(self._header_value).strip()
        self._header_field = bytearray()
        self._header_value = bytearray()

    def _on_headers_finished(self):
        self._events.append(("headers", self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int):
        if end > start:
            self._events.append(("data", bytes(data[start:end])))

    def _on_part_end(self):
        self._events.append(("end", None))

    def _on_end(self):
        self._events.append(("finish", None))

    # ------------------------------------------------------------------
    # Event application (async)
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        events, self._events = self._events, []
        for kind, payload in events:
            if kind == "begin":
                self.state = DemuxState.READING_PART_HEADERS
                self._part = _Part()
            elif kind == "headers":
                await self._start_part_body(payload)
            elif kind == "data":
                await self._write_part_data(payload)
            elif kind == "end":
                await self._complete_part()
            elif kind == "finish":
                self.state = DemuxState.STREAM_COMPLETE

    async def _start_part_body(self, headers: Dict[str, bytes]) -> None:
        part = self._part
        self.state = DemuxState.READING_PART_BODY

        disposition, options = _parse_header(headers.get("content-disposition"))
        if disposition.lower() != b"form-data" or b"name" not in options:
            logger.debug("Ignoring part without a form-data name: %r", headers.get("content-disposition"))
            part.skip = True
            return

        part.name = options[b"name"].decode("utf-8", errors="replace")

        raw_content_type = headers.get("content-type")
        content_type = raw_content_type.decode("utf-8", errors="replace") if raw_content_type else None
        if content_type:
            part.content_type = content_type
            _, ct_options = _parse_header(raw_content_type)
            if b"charset" in ct_options:
                part.charset = ct_options[b"charset"].decode("latin-1")

        if b"filename" not in options:
            return

        raw_filename = options[b"filename"].decode("utf-8", errors="replace")
        if not raw_filename:
            # A file input left empty by the user
            logger.debug("Skipping empty file field %r", part.name)
            part.skip = True
            return

        part.filename = clean_filename(raw_filename)
        if not content_type:
            part.content_type = DEFAULT_FILE_CONTENT_TYPE
        part.sink = await TempFileSink.open_unique(self.temp_dir)

    async def _write_part_data(self, data: bytes) -> None:
        part = self._part
        if part is None or part.skip:
            return
        if part.sink is not None:
            await part.sink.write(data)
        else:
            part.buffer.extend(data)

    async def _complete_part(self) -> None:
        part = self._part
        self.state = DemuxState.PART_COMPLETE

        if part is None or part.skip:
            pass
        elif part.sink is not None:
            path = await part.sink.close()
            handle = self.lifecycle.register(UploadHandle(
                content_type=part.content_type,
                original_filename=part.filename,
                storage_path=path,
                size=part.sink.size,
            ))
            self.fields.add(part.name, handle)
            logger.debug("File field %r stored %d bytes at %s", part.name, handle.size, path)
        else:
            try:
                value = part.buffer.decode(part.charset)
            except (UnicodeDecodeError, LookupError) as e:
                raise MalformedMultipart(
                    f"Field {part.name!r} is not valid {part.charset}",
                    field=part.name,
                ) from e
            self.fields.add(part.name, value)

        self._part = None
        self.state = DemuxState.SEEKING_BOUNDARY

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def feed(self, chunk: bytes) -> None:
        """Parse one chunk of the body."""
        if self.state is DemuxState.STREAM_COMPLETE:
            # Epilogue after the closing boundary
            return
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            raise MalformedMultipart(f"Multipart parsing failed: {e}") from e
        await self._drain()

    async def finish(self) -> FieldMap:
        """
        Signal end of input and return the completed FieldMap.

        Raises:
            MalformedMultipart: If the closing boundary was never seen
        """
        self._parser.finalize()
        await self._drain()
        if self.state is not DemuxState.STREAM_COMPLETE:
            raise MalformedMultipart(
                "Multipart body ended before the closing boundary",
                state=self.state.value,
            )
        return self.fields

    async def abort(self) -> None:
        """Discard the file of a part interrupted mid-stream."""
        part, self._part = self._part, None
        self._events = []
        if part is not None and part.sink is not None:
            await part.sink.discard()

    async def parse(self, source: AsyncIterable[bytes]) -> FieldMap:
        """
        Consume ``source`` completely and return the FieldMap.

        On any failure the partial file of the current part is removed;
        completed parts stay registered with the lifecycle.
        """
        try:
            async for chunk in source:
                await self.feed(chunk)
            return await self.finish()
        except BaseException:
            await self.abort()
            raise
