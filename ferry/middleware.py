"""
UploadMiddleware - ASGI middleware running the upload pipeline.

For multipart/form-data requests the body is parsed before the wrapped
application runs. The application finds the results in the scope::

    scope["state"]["uploads"]            # FieldMap
    scope["state"]["upload_lifecycle"]   # UploadLifecycle

Temporary files still owned by the lifecycle are deleted once the
application returns, raises, or is cancelled. Faults become JSON error
responses with the fault's HTTP status.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from .config import UploadConfig
from .faults import Fault, Severity
from .request import UploadRequest
from .response import Response
from .tempfiles import UploadTempDir

ASGIApp = Callable[[dict, Callable, Callable], Awaitable[None]]


class UploadMiddleware:
    """
    Parses multipart bodies for the wrapped ASGI app.

    Args:
        app: Wrapped ASGI application
        config: Upload configuration (defaults when omitted)
        temp_dir: Temporary directory (process-wide one by default)
        debug: Expose messages of non-public faults
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        config: Optional[UploadConfig] = None,
        temp_dir: Optional[UploadTempDir] = None,
        debug: bool = False,
    ):
        self.app = app
        self.config = config or UploadConfig()
        if temp_dir is None:
            if self.config.tmp_dir is not None:
                temp_dir = UploadTempDir.for_base(self.config.tmp_dir)
            else:
                temp_dir = UploadTempDir.default()
        self.temp_dir = temp_dir
        self.debug = debug
        self.logger = logging.getLogger("ferry.middleware")

    async def __call__(self, scope: dict, receive: Callable, send: Callable) -> None:
        if scope["type"] == "lifespan":
            await self.handle_lifespan(scope, receive, send)
            return
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = UploadRequest(
            scope,
            receive,
            limits=self.config.limits,
            temp_dir=self.temp_dir,
        )
        if not request.is_multipart():
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: dict) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            fields = await request.form()

            state = scope.setdefault("state", {})
            state["uploads"] = fields
            state["upload_lifecycle"] = request.lifecycle

            await self.app(scope, _replay_empty_body(receive), send_wrapper)

        except Fault as e:
            if response_started:
                raise
            await self.fault_response(e).send_asgi(send)

        finally:
            await request.cleanup()

    def fault_response(self, fault: Fault) -> Response:
        """Map a fault to a JSON error response."""
        status = fault.status or 500
        message = fault.message if (fault.public or self.debug) else "Internal server error"

        log_level = {
            Severity.INFO: logging.INFO,
            Severity.WARN: logging.WARNING,
            Severity.ERROR: logging.ERROR,
            Severity.FATAL: logging.CRITICAL,
        }[fault.severity]
        self.logger.log(
            log_level,
            "[%s] %s: %s %s",
            fault.domain.value.upper(), fault.code, fault.message, fault.metadata,
        )

        return Response.json(
            {
                "error": {
                    "code": fault.code,
                    "message": message,
                    "domain": fault.domain.value,
                }
            },
            status=status,
        )

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable) -> None:
        """Pass lifespan through, removing the temp dir on shutdown."""

        async def send_wrapper(message: dict) -> None:
            if message["type"] == "lifespan.shutdown.complete":
                self.temp_dir.shutdown()
                self.logger.debug("Upload temp dir torn down")
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _replay_empty_body(receive: Callable) -> Callable[[], Awaitable[Any]]:
    """The body is consumed; the app sees an empty one, then the live transport."""
    replayed = False

    async def wrapped() -> Any:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": b"", "more_body": False}
        return await receive()

    return wrapped
