"""
Core data structures for request inspection.

Provides:
- Headers: Case-insensitive access to raw ASGI headers
- ParsedContentType: Content-Type parsing helper
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# ============================================================================
# Headers
# ============================================================================

@dataclass
class Headers:
    """
    Case-insensitive header access with raw preservation.
    """

    raw: List[Tuple[bytes, bytes]] = field(default_factory=list)
    _index: Dict[str, List[bytes]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._index = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            self._index.setdefault(key, []).append(value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        values = self._index.get(name.lower())
        if values:
            return values[0].decode("latin-1")
        return default

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value


# ============================================================================
# ParsedContentType
# ============================================================================

@dataclass
class ParsedContentType:
    """
    Parsed Content-Type header.

    Extracts media type and parameters (e.g., boundary).
    """

    media_type: str
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, content_type: Optional[str]) -> Optional["ParsedContentType"]:
        """Parse Content-Type header."""
        if not content_type:
            return None

        parts = content_type.split(";")
        media_type = parts[0].strip().lower()

        params = {}
        for part in parts[1:]:
            if "=" in part:
                key, value = part.split("=", 1)
                params[key.strip().lower()] = value.strip().strip('"')

        return cls(media_type=media_type, params=params)

    @property
    def boundary(self) -> Optional[str]:
        """Get boundary parameter (for multipart)."""
        return self.params.get("boundary")

    @property
    def is_multipart_form(self) -> bool:
        return self.media_type == "multipart/form-data"
