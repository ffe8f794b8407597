"""
Temporary upload storage.

Provides:
- UploadTempDir: process-wide directory holding in-flight upload files
- TempFileSink: a uniquely named file receiving one part's bytes

Names combine the process id, a per-process counter and a random
suffix, and files are opened in exclusive-create mode. Concurrent
requests never coordinate through a lock.
"""

from __future__ import annotations

import atexit
import itertools
import logging
import os
import secrets
import shutil
import threading
from pathlib import Path
from typing import List, Optional, Union

import aiofiles
import aiofiles.os

from .faults import StorageUnavailable

logger = logging.getLogger("ferry.tempfiles")

TMPDIR_ENV_VARS = ("FERRY_TMPDIR", "TMPDIR", "TMP", "TEMP")

_counter = itertools.count()


def unique_name(prefix: str = "upload") -> str:
    """Generate a file name that is unique across concurrent requests."""
    return f"{prefix}-{os.getpid()}-{next(_counter)}-{secrets.token_hex(8)}"


# ============================================================================
# UploadTempDir
# ============================================================================

class UploadTempDir:
    """
    Process-wide temporary directory for in-flight uploads.

    Created lazily on first use under the first writable base directory
    and removed at process shutdown. A forked child gets its own
    directory.
    """

    _default: Optional["UploadTempDir"] = None
    _default_lock = threading.Lock()

    def __init__(self, base: Optional[Union[str, Path]] = None):
        self.base = Path(base) if base else None
        self._path: Optional[Path] = None
        self._pid: Optional[int] = None
        self._lock = threading.Lock()

    @classmethod
    def default(cls, base: Optional[Union[str, Path]] = None) -> "UploadTempDir":
        """
        Return the process-wide instance, creating it on first call.

        ``base`` only applies to the call that creates the instance.
        """
        if cls._default is None:
            with cls._default_lock:
                if cls._default is None:
                    cls._default = cls.for_base(base)
                    return cls._default

        if base is not None and Path(base) != cls._default.base:
            logger.warning(
                "Process temp dir already uses base %s; ignoring %s",
                cls._default.base, base,
            )
        return cls._default

    @classmethod
    def for_base(cls, base: Optional[Union[str, Path]] = None) -> "UploadTempDir":
        """A separate instance under ``base``, removed at process exit."""
        instance = cls(base)
        atexit.register(instance.shutdown)
        return instance

    @classmethod
    def reset_default(cls) -> None:
        """Tear down and forget the process-wide instance."""
        with cls._default_lock:
            if cls._default is not None:
                cls._default.shutdown()
                cls._default = None

    def candidates(self) -> List[Path]:
        """Base directories to try, in order."""
        bases = []
        if self.base:
            bases.append(self.base)
        for var in TMPDIR_ENV_VARS:
            value = os.environ.get(var)
            if value:
                bases.append(Path(value))
        bases.append(Path("/tmp"))
        bases.append(Path.cwd())
        return bases

    @property
    def path(self) -> Path:
        """The directory, created on first access."""
        pid = os.getpid()
        if self._path is not None and self._pid == pid:
            return self._path

        with self._lock:
            if self._path is None or self._pid != pid:
                self._path = self._create(pid)
                self._pid = pid
        return self._path

    def _create(self, pid: int) -> Path:
        for base in self.candidates():
            candidate = base / f"ferry-{pid}-{secrets.token_hex(4)}"
            try:
                candidate.mkdir(mode=0o700, parents=True)
            except OSError as e:
                logger.debug("Cannot use %s for uploads: %s", base, e)
                continue
            logger.debug("Upload temp dir created at %s", candidate)
            return candidate

        raise StorageUnavailable(
            "No writable temporary directory",
            tried=[str(b) for b in self.candidates()],
        )

    @property
    def is_created(self) -> bool:
        return self._path is not None and self._pid == os.getpid()

    def shutdown(self) -> None:
        """Remove the directory and everything left inside it."""
        with self._lock:
            if self._path is not None and self._pid == os.getpid():
                shutil.rmtree(self._path, ignore_errors=True)
                logger.debug("Upload temp dir %s removed", self._path)
            self._path = None
            self._pid = None


# ============================================================================
# TempFileSink
# ============================================================================

class TempFileSink:
    """
    Writable temporary file with a generated unique name.

    Usage::

        sink = await TempFileSink.open_unique(tmp.path)
        await sink.write(chunk)
        path = await sink.close()
    """

    MAX_ATTEMPTS = 10

    def __init__(self, path: Path, handle):
        self.path = path
        self._handle = handle
        self.size = 0

    @classmethod
    async def open_unique(cls, directory: Path, prefix: str = "upload") -> "TempFileSink":
        """
        Create a new uniquely named file inside ``directory``.

        Raises:
            StorageUnavailable: If the file cannot be created
        """
        for _ in range(cls.MAX_ATTEMPTS):
            path = Path(directory) / unique_name(prefix)
            try:
                handle = await aiofiles.open(path, "xb")
            except FileExistsError:
                continue
            except OSError as e:
                raise StorageUnavailable(
                    "Cannot create temporary upload file",
                    directory=str(directory),
                    error=str(e),
                ) from e
            return cls(path, handle)

        raise StorageUnavailable(
            "Cannot allocate a unique temporary file name",
            directory=str(directory),
        )

    @property
    def closed(self) -> bool:
        return self._handle is None

    async def write(self, data: bytes) -> None:
        if self._handle is None:
            raise ValueError(f"Sink for {self.path} is closed")
        try:
            await self._handle.write(data)
        except OSError as e:
            raise StorageUnavailable(
                "Cannot write temporary upload file",
                path=str(self.path),
                error=str(e),
            ) from e
        self.size += len(data)

    async def close(self) -> Path:
        """Flush and close the file, returning its final path."""
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await handle.close()
            except OSError as e:
                raise StorageUnavailable(
                    "Cannot close temporary upload file",
                    path=str(self.path),
                    error=str(e),
                ) from e
        return self.path

    async def discard(self) -> None:
        """Close and remove a partially written file."""
        if self._handle is not None:
            handle, self._handle = self._handle, None
            try:
                await handle.close()
            except OSError:
                logger.warning("Failed to close partial upload %s", self.path)
        try:
            await aiofiles.os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove partial upload %s: %s", self.path, e)
