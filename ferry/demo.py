"""
Demo ASGI application.

``POST /upload`` echoes the parsed FieldMap as JSON. With
``?keep=<id>`` the file field named by ``?field=`` (default ``photo``)
is moved into the upload store as ``<id><ext>`` and its public URL is
returned.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qs

from .config import UploadConfig
from .middleware import UploadMiddleware
from .response import Response
from .store import LocalUploadStore
from .tempfiles import UploadTempDir


def create_app(
    config: Optional[UploadConfig] = None,
    *,
    temp_dir: Optional[UploadTempDir] = None,
    debug: bool = False,
) -> UploadMiddleware:
    """Build the demo app wrapped in :class:`UploadMiddleware`."""
    config = config or UploadConfig()
    store = LocalUploadStore.from_config(config)

    async def app(scope: dict, receive, send) -> None:
        if scope["type"] == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await send({"type": "lifespan.shutdown.complete"})
                    return

        if scope["path"] != "/upload" or scope["method"] != "POST":
            await Response.json({"error": "Not found"}, status=404).send_asgi(send)
            return

        state = scope.get("state", {})
        fields = state.get("uploads")
        if fields is None:
            await Response.json(
                {"error": "Expected multipart/form-data"}, status=415,
            ).send_asgi(send)
            return

        payload = {"fields": fields.to_dict()}

        query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
        keep = query.get("keep")
        if keep:
            field = query.get("field", ["photo"])[0]
            handle = fields.get_file(field)
            if handle is None:
                await Response.json(
                    {"error": f"No file in field {field!r}"}, status=400,
                ).send_asgi(send)
                return
            try:
                path = await store.persist(handle, keep[0], state["upload_lifecycle"])
            except FileExistsError:
                await Response.json(
                    {"error": f"Upload {keep[0]!r} already exists"}, status=409,
                ).send_asgi(send)
                return
            payload["persisted"] = {"path": str(path), "url": store.url_for(path)}

        await Response.json(payload).send_asgi(send)

    return UploadMiddleware(app, config=config, temp_dir=temp_dir, debug=debug)
