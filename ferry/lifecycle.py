"""
Upload lifecycle - request-scoped ownership of temporary upload files.

Every UploadHandle created while parsing a request is registered here.
When the request finishes (success, fault, or cancellation) ``cleanup``
deletes the file of every handle still owned. ``transfer_ownership``
hands a file to a longer-lived owner so cleanup leaves it alone.
"""

from __future__ import annotations

import errno
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles.os

from ._uploads import UploadHandle

logger = logging.getLogger("ferry.lifecycle")


class UploadLifecycle:
    """
    Owns the temporary files of one request.

    Usage::

        async with UploadLifecycle() as lifecycle:
            fields = await demux.parse(...)
            await lifecycle.transfer_ownership(fields["photo"], dest)
        # every other file is gone here
    """

    def __init__(self):
        self._owned: Dict[int, UploadHandle] = {}
        self._closed = False

    @property
    def owned(self) -> List[UploadHandle]:
        """Handles whose files will be deleted on cleanup."""
        return list(self._owned.values())

    def owns(self, handle: UploadHandle) -> bool:
        return id(handle) in self._owned

    def register(self, handle: UploadHandle) -> UploadHandle:
        """Put ``handle`` under this lifecycle's ownership."""
        if self._closed:
            raise RuntimeError("Cannot register uploads after cleanup has run")
        self._owned[id(handle)] = handle
        return handle

    async def transfer_ownership(
        self,
        handle: UploadHandle,
        new_path: Optional[Union[str, Path]] = None,
    ) -> UploadHandle:
        """
        Remove ``handle`` from automatic cleanup.

        With ``new_path`` the file is moved there first and the handle's
        ``storage_path`` updated. The caller is responsible for the file
        from now on.

        Raises:
            KeyError: If the handle is not owned by this lifecycle
        """
        if id(handle) not in self._owned:
            raise KeyError(f"Upload {handle.storage_path} is not owned by this request")

        if new_path is not None:
            dest = Path(new_path)
            await aiofiles.os.makedirs(dest.parent, exist_ok=True)
            await _move(handle.storage_path, dest)
            handle.storage_path = dest

        del self._owned[id(handle)]
        logger.debug("Ownership of %s transferred", handle.storage_path)
        return handle

    async def release(self, handle: UploadHandle) -> None:
        """Delete one owned file now instead of at cleanup."""
        if self._owned.pop(id(handle), None) is not None:
            await _unlink(handle.storage_path)

    async def cleanup(self) -> None:
        """
        Delete every still-owned file. Safe to call more than once.
        """
        self._closed = True
        handles, self._owned = list(self._owned.values()), {}
        for handle in handles:
            await _unlink(handle.storage_path)
        if handles:
            logger.debug("Removed %d temporary upload(s)", len(handles))

    async def __aenter__(self) -> "UploadLifecycle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()


async def _unlink(path: Path) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temporary upload %s: %s", path, e)


async def _move(src: Path, dest: Path) -> None:
    try:
        await aiofiles.os.replace(src, dest)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        await aiofiles.os.wrap(shutil.copy2)(src, dest)
        await _unlink(src)
