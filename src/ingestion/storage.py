"""
Raw file storage.

Stores an uploaded export file and returns a durable URL that the extraction
service can read back.
"""

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Protocol

from src.ingestion.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class FileStorage(Protocol):
    """Accepts raw file bytes and returns a retrievable URL."""

    async def store(self, content: bytes, filename: str) -> str: ...


class LocalFileStorage:
    """
    Stores uploads on the local filesystem and returns file:// URLs.

    Each stored file gets a unique prefix so repeated uploads of the same
    filename never overwrite each other.
    """

    def __init__(self, upload_dir: Path):
        self.upload_dir = Path(upload_dir)

    async def store(self, content: bytes, filename: str) -> str:
        safe_name = _UNSAFE_CHARS.sub("_", Path(filename).name) or "upload"
        target = self.upload_dir / f"{uuid.uuid4().hex[:12]}_{safe_name}"
        try:
            await asyncio.to_thread(self._write, target, content)
        except OSError as e:
            raise StorageError(f"Failed to store '{filename}': {e}") from e

        logger.info(f"Stored upload '{filename}' ({len(content)} bytes) at {target}")
        return target.resolve().as_uri()

    def _write(self, target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
