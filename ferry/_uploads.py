"""
Upload handles and the field map produced by multipart parsing.

Provides:
- UploadHandle: Metadata and disk location of one uploaded file
- FieldMap: Ordered mapping of form fields and upload handles
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Any, AsyncIterator, ClassVar, Dict, Iterator, List, MutableMapping,
    Optional, Union
)

import aiofiles
import aiofiles.os


# ============================================================================
# UploadHandle
# ============================================================================

@dataclass(eq=False)
class UploadHandle:
    """
    Uploaded file representation.

    The file lives at ``storage_path`` inside the process temporary
    directory and is owned by the request lifecycle that created it,
    until ownership is transferred.
    """

    content_type: str
    original_filename: str
    storage_path: Path
    size: int = 0
    _chunk_size: ClassVar[int] = 64 * 1024

    @property
    def extension(self) -> str:
        """Lower-cased extension of the original filename (e.g. ``.png``)."""
        return os.path.splitext(self.original_filename)[1].lower()

    async def read(self, size: int = -1) -> bytes:
        """
        Read file content.

        Args:
            size: Number of bytes to read (-1 for all)

        Returns:
            File content as bytes
        """
        async with aiofiles.open(self.storage_path, "rb") as f:
            return await f.read(size)

    async def stream(self, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """
        Stream file content in chunks.

        Args:
            chunk_size: Size of each chunk

        Yields:
            File chunks
        """
        chunk_size = chunk_size or self._chunk_size
        async with aiofiles.open(self.storage_path, "rb") as f:
            while True:
                chunk = await f.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    async def save(self, path: Union[str, Path], overwrite: bool = False) -> Path:
        """
        Copy the uploaded file to ``path``.

        The temporary file is left in place and stays owned by the
        request; use ``UploadLifecycle.transfer_ownership`` to move it.

        Raises:
            FileExistsError: If file exists and overwrite=False
        """
        dest = Path(path)

        if dest.exists() and not overwrite:
            raise FileExistsError(f"File already exists: {dest}")

        await aiofiles.os.makedirs(dest.parent, exist_ok=True)

        async with aiofiles.open(self.storage_path, "rb") as src:
            async with aiofiles.open(dest, "wb") as dst:
                while True:
                    chunk = await src.read(self._chunk_size)
                    if not chunk:
                        break
                    await dst.write(chunk)

        return dest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_type": self.content_type,
            "original_filename": self.original_filename,
            "storage_path": str(self.storage_path),
            "size": self.size,
        }


FieldValue = Union[str, UploadHandle, List[Union[str, UploadHandle]]]


# ============================================================================
# FieldMap
# ============================================================================

class FieldMap(MutableMapping[str, FieldValue]):
    """
    Ordered mapping from field name to a string or an UploadHandle.

    Repeated names: the last value wins, except for names ending in
    ``[]`` which collect every value into a list stored under the name
    without the suffix.
    """

    LIST_SUFFIX = "[]"

    def __init__(self, items: Optional[List[tuple]] = None):
        self._data: Dict[str, FieldValue] = {}
        for name, value in items or []:
            self.add(name, value)

    def add(self, name: str, value: Union[str, UploadHandle]) -> None:
        """Add a parsed value, applying the repeated-name policy."""
        if name.endswith(self.LIST_SUFFIX) and len(name) > len(self.LIST_SUFFIX):
            key = name[:-len(self.LIST_SUFFIX)]
            existing = self._data.get(key)
            if isinstance(existing, list):
                existing.append(value)
            else:
                self._data[key] = [value]
        else:
            self._data[name] = value

    def __getitem__(self, key: str) -> FieldValue:
        return self._data[key]

    def __setitem__(self, key: str, value: FieldValue) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"FieldMap({self._data!r})"

    def files(self) -> Iterator[UploadHandle]:
        """Iterate over every upload handle, including those inside lists."""
        for value in self._data.values():
            values = value if isinstance(value, list) else [value]
            for item in values:
                if isinstance(item, UploadHandle):
                    yield item

    def fields(self) -> Dict[str, Union[str, List[str]]]:
        """Plain (non-file) values only."""
        result = {}
        for key, value in self._data.items():
            if isinstance(value, str):
                result[key] = value
            elif isinstance(value, list):
                strings = [v for v in value if isinstance(v, str)]
                if strings:
                    result[key] = strings
        return result

    def get_file(self, name: str) -> Optional[UploadHandle]:
        """Get the upload handle for ``name`` (first one for list fields)."""
        value = self._data.get(name)
        if isinstance(value, list):
            value = next((v for v in value if isinstance(v, UploadHandle)), None)
        return value if isinstance(value, UploadHandle) else None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        def convert(value):
            if isinstance(value, UploadHandle):
                return value.to_dict()
            if isinstance(value, list):
                return [convert(v) for v in value]
            return value

        return {key: convert(value) for key, value in self._data.items()}
