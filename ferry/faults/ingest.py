"""
Upload ingestion faults.

Every fault here is terminal for the request that raised it.
"""

from __future__ import annotations

from .core import Fault, FaultDomain


class IngestFault(Fault):
    """Base class for upload ingestion faults."""
    public = True

    def __init__(self, message: str = None, **metadata):
        super().__init__(
            code=self.code,
            message=message or type(self).message,
            domain=self.domain,
            metadata=metadata,
        )


class ReadTimeout(IngestFault):
    """No body data arrived within the per-chunk read timeout (408)."""
    code = "READ_TIMEOUT"
    message = "Timed out waiting for request body"
    domain = FaultDomain.TRANSPORT
    status = 408


class PayloadTooLarge(IngestFault):
    """Request body exceeds the configured limit (413)."""
    code = "PAYLOAD_TOO_LARGE"
    message = "Payload too large"
    domain = FaultDomain.LIMITS
    status = 413


class MalformedMultipart(IngestFault):
    """Multipart protocol violation or truncated stream (400)."""
    code = "MALFORMED_MULTIPART"
    message = "Malformed multipart body"
    domain = FaultDomain.PROTOCOL
    status = 400


class ClientDisconnect(MalformedMultipart):
    """Client went away before the body was complete."""
    code = "CLIENT_DISCONNECT"
    message = "Client disconnected"
    domain = FaultDomain.TRANSPORT


class UnsupportedMediaType(IngestFault):
    """Request is not multipart/form-data (415)."""
    code = "UNSUPPORTED_MEDIA_TYPE"
    message = "Unsupported media type"
    domain = FaultDomain.PROTOCOL
    status = 415


class StorageUnavailable(IngestFault):
    """Temporary storage could not be created or written (500)."""
    code = "STORAGE_UNAVAILABLE"
    message = "Upload storage unavailable"
    domain = FaultDomain.STORAGE
    status = 500
    public = False
