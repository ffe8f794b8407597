"""
Ferry - Multipart upload ingestion for ASGI applications

- Streaming multipart/form-data parsing with bounded, timed reads
- Body size limits enforced before data reaches the disk
- Uniquely named temporary files in a process-wide directory
- Request-scoped cleanup with explicit ownership transfer
"""

__version__ = "0.1.0"

from .config import ConfigError, ConfigLoader, ParserLimits, UploadConfig
from ._uploads import FieldMap, UploadHandle
from .faults import (
    Fault,
    ReadTimeout,
    PayloadTooLarge,
    MalformedMultipart,
    ClientDisconnect,
    UnsupportedMediaType,
    StorageUnavailable,
)
from .lifecycle import UploadLifecycle
from .middleware import UploadMiddleware
from .multipart import DemuxState, MultipartDemultiplexer
from .reader import ChunkReader, LimitEnforcer
from .request import UploadRequest
from .store import LocalUploadStore
from .tempfiles import TempFileSink, UploadTempDir

__all__ = [
    "__version__",
    # Config
    "ConfigError",
    "ConfigLoader",
    "ParserLimits",
    "UploadConfig",
    # Uploads
    "FieldMap",
    "UploadHandle",
    # Faults
    "Fault",
    "ReadTimeout",
    "PayloadTooLarge",
    "MalformedMultipart",
    "ClientDisconnect",
    "UnsupportedMediaType",
    "StorageUnavailable",
    # Pipeline
    "ChunkReader",
    "LimitEnforcer",
    "MultipartDemultiplexer",
    "DemuxState",
    "TempFileSink",
    "UploadTempDir",
    "UploadLifecycle",
    "UploadRequest",
    "UploadMiddleware",
    "LocalUploadStore",
]
