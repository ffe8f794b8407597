"""
Minimal ASGI response used for fault replies and the demo app.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import orjson


class Response:
    """
    Buffered HTTP response sent over ASGI in a single body message.
    """

    def __init__(
        self,
        content: bytes = b"",
        status: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        media_type: Optional[str] = None,
    ):
        self.status = status
        self.body = content
        self._headers: Dict[str, str] = {k.lower(): v for k, v in (headers or {}).items()}
        if media_type:
            self._headers["content-type"] = media_type
        self._headers.setdefault("content-type", "application/octet-stream")

    @property
    def headers(self) -> Dict[str, str]:
        return self._headers

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """Create JSON response."""
        return cls(
            content=orjson.dumps(obj, default=str),
            status=status,
            headers=headers,
            media_type="application/json",
        )

    def _prepare_headers(self) -> List[tuple]:
        headers = dict(self._headers)
        headers["content-length"] = str(len(self.body))
        return [(k.encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()]

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(),
        })
        await send({"type": "http.response.body", "body": self.body})
