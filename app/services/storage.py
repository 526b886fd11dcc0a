"""
File storage capability: upload files, read them back by path.
"""
import asyncio
import logging
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

from app.core.config import settings
from app.core.exceptions import ResourceResolutionError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class LocalFile:
    """A file held in memory, as selected by the user or produced by conversion."""
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class StoredFile:
    path: str
    name: str
    size: int


class FileStorage(Protocol):
    async def upload(self, files: Sequence[LocalFile]) -> Optional[StoredFile]:
        ...

    async def read(self, path: str) -> bytes:
        ...


def safe_filename(name: str) -> str:
    base = os.path.basename(name or "").strip()
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "file"


class LocalFileStorage:
    """Stores uploads under a root directory; paths are relative to that root."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.storage_dir).resolve()

    async def upload(self, files: Sequence[LocalFile]) -> Optional[StoredFile]:
        """
        Store every file and return the first one's reference.
        Returns None when nothing was given or the write failed.
        """
        if not files:
            return None
        try:
            stored = [await asyncio.to_thread(self._write, f) for f in files]
        except OSError as e:
            logger.error(f"Storage upload failed: {e}", exc_info=True)
            return None
        return stored[0]

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read, path)

    def _write(self, file: LocalFile) -> StoredFile:
        relative = f"{uuid.uuid4().hex}/{safe_filename(file.name)}"
        target = self.root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(file.data)
        logger.info(f"Stored {file.name} at {relative} ({file.size} bytes)")
        return StoredFile(path=relative, name=file.name, size=file.size)

    def _read(self, path: str) -> bytes:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise ResourceResolutionError(f"Path outside storage root: {path}")
        try:
            return target.read_bytes()
        except OSError as e:
            raise ResourceResolutionError(f"Cannot read {path}: {e.strerror or e}") from e
