"""
Shared test fixtures and helpers for the Ferry test suite.
"""

import asyncio
from typing import Dict, List, Optional, Tuple, Union

import pytest

from ferry.config import ParserLimits
from ferry.lifecycle import UploadLifecycle
from ferry.tempfiles import UploadTempDir


BOUNDARY = "----FerryTestBoundary7MA4YWxkTrZu0gW"


# ============================================================================
# Request Helpers
# ============================================================================


def make_scope(
    method: str = "POST",
    path: str = "/upload",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    content_type: Optional[str] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if content_type is not None:
        raw_headers.append((b"content-type", content_type.encode("latin-1")))
    for name, value in headers or []:
        raw_headers.append(
            (name.encode("latin-1") if isinstance(name, str) else name,
             value.encode("latin-1") if isinstance(value, str) else value)
        )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "scheme": "http",
        "server": ("127.0.0.1", 8000),
        "client": ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_receive(
    body: bytes = b"",
    *,
    chunks: Optional[List[bytes]] = None,
    disconnect_after: bool = False,
    stall_after: Optional[int] = None,
):
    """
    Create an ASGI receive callable from body bytes or chunked list.

    Args:
        body: Complete request body bytes.
        chunks: Optional list of body chunks (overrides *body*).
        disconnect_after: Send ``http.disconnect`` instead of the final
            ``more_body=False`` message.
        stall_after: Hang forever after this many messages.
    """
    if chunks is None:
        chunks = [body]

    messages = []
    for i, chunk in enumerate(chunks):
        last = i == len(chunks) - 1
        messages.append({
            "type": "http.request",
            "body": chunk,
            "more_body": (not last) or disconnect_after,
        })

    idx = 0

    async def receive():
        nonlocal idx
        if stall_after is not None and idx >= stall_after:
            await asyncio.Event().wait()
        if idx < len(messages):
            msg = messages[idx]
            idx += 1
            return msg
        return {"type": "http.disconnect"}

    receive.calls = lambda: idx
    return receive


FileSpec = Union[bytes, Tuple[str, bytes], Tuple[str, bytes, str]]


def build_multipart(
    data: Optional[Union[Dict[str, str], List[Tuple[str, str]]]] = None,
    files: Optional[Union[Dict[str, FileSpec], List[Tuple[str, FileSpec]]]] = None,
    boundary: str = BOUNDARY,
) -> Tuple[bytes, str]:
    """
    Build a multipart/form-data body from form fields and files.

    Files can be:
    - ``bytes``: raw content (named after the field)
    - ``(filename, content_bytes)``: named file
    - ``(filename, content_bytes, content_type)``: named file with type

    Returns:
        ``(body_bytes, content_type_header)``
    """
    parts: list = []

    data_items = data.items() if isinstance(data, dict) else (data or [])
    for name, value in data_items:
        parts.append(
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
            f"{value}\r\n".encode("utf-8")
        )

    file_items = files.items() if isinstance(files, dict) else (files or [])
    for field_name, file_info in file_items:
        if isinstance(file_info, bytes):
            filename, content, content_type = field_name, file_info, "application/octet-stream"
        elif len(file_info) == 2:
            (filename, content), content_type = file_info, "application/octet-stream"
        else:
            filename, content, content_type = file_info

        parts.append(
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{field_name}"; filename="{filename}"\r\n'
            f"Content-Type: {content_type}\r\n\r\n".encode("utf-8")
            + content
            + b"\r\n"
        )

    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return b"".join(parts), f"multipart/form-data; boundary={boundary}"


def split(body: bytes, size: int) -> List[bytes]:
    """Split a body into ``size``-byte chunks."""
    return [body[i:i + size] for i in range(0, len(body), size)] or [b""]


def temp_files(temp_dir: UploadTempDir) -> List:
    """Files currently in the temp dir (empty when it was never created)."""
    if not temp_dir.is_created:
        return []
    return sorted(temp_dir.path.iterdir())


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def temp_dir(tmp_path):
    """An isolated upload temp dir under pytest's tmp_path."""
    tmp = UploadTempDir(tmp_path)
    yield tmp
    tmp.shutdown()


@pytest.fixture
def lifecycle():
    return UploadLifecycle()


@pytest.fixture
def limits():
    return ParserLimits()
