"""
Ferry faults - Core types and fault taxonomy.

Defines:
- Fault base class (structured fault objects)
- FaultDomain (explicit fault domains)
- Severity levels
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.

    Determines the logging level used when a fault is reported.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Fault domains (taxonomy).

    Identifies the functional area where a fault occurred.
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.TRANSPORT = FaultDomain("transport", "Inbound body transport")
FaultDomain.PROTOCOL = FaultDomain("protocol", "Multipart protocol violations")
FaultDomain.LIMITS = FaultDomain("limits", "Request limits")
FaultDomain.STORAGE = FaultDomain("storage", "Temporary and permanent storage")


DOMAIN_DEFAULTS = {
    FaultDomain.TRANSPORT: {"severity": Severity.WARN, "status": 400},
    FaultDomain.PROTOCOL: {"severity": Severity.WARN, "status": 400},
    FaultDomain.LIMITS: {"severity": Severity.WARN, "status": 413},
    FaultDomain.STORAGE: {"severity": Severity.ERROR, "status": 500},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.

    Attributes:
        code: Stable machine-readable identifier (e.g., "PAYLOAD_TOO_LARGE")
        message: Human-readable summary
        domain: Fault domain
        severity: Fault severity
        status: HTTP status the fault maps to
        public: Whether the message is safe to expose to the client
        metadata: Additional context data

    Example:
        ```python
        raise Fault(
            code="UPLOAD_REJECTED",
            message="Upload rejected by policy",
            domain=FaultDomain.PROTOCOL,
            public=True,
        )
        ```
    """

    code: Optional[str] = None
    message: Optional[str] = None
    domain: Optional[FaultDomain] = None
    status: Optional[int] = None
    public: bool = False

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        status: Optional[int] = None,
        public: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else type(self).code
        self.message = message if message is not None else type(self).message
        self.domain = domain if domain is not None else type(self).domain

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)

        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "status": 500})
        self.severity = severity or defaults["severity"]
        self.status = status or type(self).status or defaults["status"]
        self.public = public if public is not None else type(self).public
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"Fault(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value}, status={self.status})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.

        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "status": self.status,
            "public": self.public,
            "metadata": self.metadata,
        }
