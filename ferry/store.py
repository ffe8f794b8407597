"""
Permanent storage for uploads the application decides to keep.

Files are moved out of the temporary directory into ``upload_dir`` under
a name built from an application identifier plus the original
extension, so a static file server can expose them under
``static_prefix``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

from ._uploads import UploadHandle
from .config import UploadConfig
from .lifecycle import UploadLifecycle

logger = logging.getLogger("ferry.store")

UNSAFE_CHARS = ["<", ">", ":", '"', "/", "\\", "|", "?", "*", " "]


class LocalUploadStore:
    """
    Local filesystem store for persisted uploads.
    """

    def __init__(
        self,
        upload_dir: Union[str, Path],
        static_prefix: str = "/uploads",
    ):
        self.upload_dir = Path(upload_dir)
        self.static_prefix = static_prefix.rstrip("/")

    @classmethod
    def from_config(cls, config: UploadConfig) -> "LocalUploadStore":
        return cls(config.upload_dir, config.static_prefix)

    def name_for(self, handle: UploadHandle, identifier: Union[str, int]) -> str:
        """Storage name: sanitized identifier plus the upload's extension."""
        return self._sanitize(str(identifier)) + self._sanitize(handle.extension, allow_empty=True)

    async def persist(
        self,
        handle: UploadHandle,
        identifier: Union[str, int],
        lifecycle: UploadLifecycle,
    ) -> Path:
        """
        Take ownership of ``handle`` and move its file into the store.

        Args:
            handle: Upload owned by ``lifecycle``
            identifier: Application-level identifier (e.g. a record id)
            lifecycle: The request lifecycle currently owning the upload

        Returns:
            Final file path

        Raises:
            FileExistsError: If a file with the same name is already stored
            KeyError: If the handle is not owned by ``lifecycle``
        """
        if not lifecycle.owns(handle):
            raise KeyError(f"Upload {handle.storage_path} is not owned by this request")

        dest = self.upload_dir / self.name_for(handle, identifier)
        await aiofiles.os.makedirs(self.upload_dir, exist_ok=True)

        # Claim the name first; the move then replaces the empty placeholder
        try:
            async with aiofiles.open(dest, "xb"):
                pass
        except FileExistsError:
            raise FileExistsError(f"File already exists: {dest}") from None

        try:
            await lifecycle.transfer_ownership(handle, dest)
        except BaseException:
            await aiofiles.os.remove(dest)
            raise

        logger.info("Persisted %r (%d bytes) as %s", handle.original_filename, handle.size, dest)
        return dest

    def url_for(self, path: Union[str, Path]) -> str:
        """URL under which the static file server exposes ``path``."""
        return f"{self.static_prefix}/{Path(path).name}"

    def _sanitize(self, name: str, allow_empty: bool = False) -> str:
        """
        Sanitize a name for safe storage.

        Removes path separators, null bytes, and other dangerous characters.
        """
        name = os.path.basename(name.replace("\\", "/"))
        name = name.replace("\x00", "")

        for char in UNSAFE_CHARS:
            name = name.replace(char, "_")

        name = name[:200]

        if allow_empty:
            return "" if name in (".", "..") else name
        if not name or name in (".", ".."):
            return "unnamed"
        return name
