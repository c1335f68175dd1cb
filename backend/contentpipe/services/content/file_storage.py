"""
Local file storage for uploaded documents.

File references are relative paths of the form
``{owner_id}/uploads/{timestamp}_{safe_name}`` resolved against
STORAGE_ROOT. Reads and writes run in a worker thread.
"""

import asyncio
import re
import time
from pathlib import Path

from contentpipe.core.config import settings
from contentpipe.core.errors import InvalidRequestError, StorageError
from contentpipe.core.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.\-]")


def sanitize_filename(filename: str) -> str:
    """Replace anything but letters, digits, dots and dashes with underscores."""
    name = Path(filename or "").name
    return _UNSAFE_CHARS.sub("_", name) or "upload"


class FileStorage:
    """Stores and retrieves document bytes under a root directory."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.STORAGE_ROOT).resolve()

    def build_reference(self, owner_id: str, filename: str) -> str:
        timestamp = int(time.time() * 1000)
        owner = sanitize_filename(owner_id)
        return f"{owner}/uploads/{timestamp}_{sanitize_filename(filename)}"

    def _resolve(self, file_ref: str) -> Path:
        path = (self.root / file_ref).resolve()
        if not path.is_relative_to(self.root):
            raise InvalidRequestError(f"File reference escapes storage root: {file_ref}")
        return path

    async def upload(self, owner_id: str, filename: str, data: bytes) -> str:
        """Write data and return its file reference."""
        file_ref = self.build_reference(owner_id, filename)
        path = self._resolve(file_ref)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("file_stored", file_ref=file_ref, size=len(data))
        return file_ref

    async def download(self, file_ref: str) -> bytes:
        """
        Read a stored file.

        Raises:
            StorageError: If the file is missing or unreadable
        """
        path = self._resolve(file_ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Failed to download file: {exc.strerror or exc}") from exc
