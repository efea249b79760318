"""
Local filesystem document storage.

Documents are written once under ``UPLOAD_DIR`` and addressed by an opaque
storage reference; readers always get the original bytes.
"""
from pathlib import Path
from typing import Optional, Union
from uuid import UUID, uuid4

import aiofiles
import aiofiles.os
import structlog

from instivault.core.config import get_settings
from instivault.core.exceptions import StorageError

logger = structlog.get_logger(__name__)


class LocalDocumentStorage:
    """Async file store rooted at a single directory."""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root or get_settings().UPLOAD_DIR).resolve()

    def _path_for(self, storage_ref: str) -> Path:
        path = (self.root / storage_ref).resolve()
        if self.root not in path.parents:
            raise StorageError("Invalid storage reference", operation="resolve")
        return path

    async def save(self, institute_id: UUID, content: bytes, suffix: str = "") -> str:
        """
        Store document content.

        Args:
            institute_id: Owning institute, used as the directory
            content: File bytes
            suffix: File extension including the dot

        Returns:
            Storage reference for later reads
        """
        storage_ref = f"{institute_id}/{uuid4().hex}{suffix.lower()}"
        path = self._path_for(storage_ref)

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("storage_write_failed", storage_ref=storage_ref, error=str(e))
            raise StorageError("Failed to store document", operation="save") from e

        logger.info("document_stored", storage_ref=storage_ref, size_bytes=len(content))
        return storage_ref

    async def read(self, storage_ref: str) -> bytes:
        path = self._path_for(storage_ref)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error("storage_read_failed", storage_ref=storage_ref, error=str(e))
            raise StorageError("Failed to read document", operation="read") from e

    async def delete(self, storage_ref: str) -> bool:
        """Remove stored content; returns False if it was already gone."""
        path = self._path_for(storage_ref)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("storage_delete_failed", storage_ref=storage_ref, error=str(e))
            raise StorageError("Failed to delete document", operation="delete") from e
        return True
