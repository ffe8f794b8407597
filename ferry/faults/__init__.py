"""
Ferry faults - Structured error types for upload ingestion.

Faults carry a stable code, a domain, a severity and the HTTP status they
map to, so the middleware can turn any of them into a response.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain taxonomy
- Severity: Severity levels
- Ingestion faults: ReadTimeout, PayloadTooLarge, MalformedMultipart,
  ClientDisconnect, UnsupportedMediaType, StorageUnavailable
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .ingest import (
    IngestFault,
    ReadTimeout,
    PayloadTooLarge,
    MalformedMultipart,
    ClientDisconnect,
    UnsupportedMediaType,
    StorageUnavailable,
)

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",

    # Ingestion
    "IngestFault",
    "ReadTimeout",
    "PayloadTooLarge",
    "MalformedMultipart",
    "ClientDisconnect",
    "UnsupportedMediaType",
    "StorageUnavailable",
]
