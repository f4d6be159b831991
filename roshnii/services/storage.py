"""
Blob storage for uploaded image files.

Only the local filesystem backend exists today; other backends plug in by
subclassing BlobStorage.
"""

import logging
import mimetypes
import time
import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Optional

from roshnii.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = "./uploads"


class StorageError(Exception):
    pass


class BlobNotFoundError(StorageError):
    pass


class BlobStorage(ABC):
    @abstractmethod
    def upload(
        self, filename: str, user_id: uuid.UUID, content: bytes, content_type: str
    ) -> str:
        """Store a file and return its storage path."""

    @abstractmethod
    def download(self, storage_path: str) -> tuple[bytes, str]:
        """Return the file content and its content type."""

    @abstractmethod
    def delete(self, storage_path: str) -> None:
        """Remove a file. Deleting a missing file is not an error."""

    @abstractmethod
    def generate_url(self, storage_path: str, expiry: timedelta) -> Optional[str]:
        """
        Direct, time-limited URL for a file, or None when the backend cannot
        serve files itself and downloads must go through the API.
        """


class LocalStorage(BlobStorage):
    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or DEFAULT_STORAGE_PATH)
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"failed to create storage directory: {e}") from e

    def _full_path(self, storage_path: str) -> Path:
        full_path = self.base_path / storage_path
        if not full_path.resolve().is_relative_to(self.base_path.resolve()):
            raise StorageError(f"invalid storage path: {storage_path}")
        return full_path

    def upload(
        self, filename: str, user_id: uuid.UUID, content: bytes, content_type: str
    ) -> str:
        user_dir = f"user_{user_id}"
        # Strip any directory components the client sent
        safe_name = Path(filename).name or "upload"
        storage_path = f"{user_dir}/{time.time_ns()}_{safe_name}"
        full_path = self._full_path(storage_path)

        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"failed to write file content: {e}") from e

        logger.debug("Stored %d bytes (%s) at %s", len(content), content_type, storage_path)
        return storage_path

    def download(self, storage_path: str) -> tuple[bytes, str]:
        full_path = self._full_path(storage_path)
        if not full_path.is_file():
            raise BlobNotFoundError(f"file not found: {storage_path}")

        try:
            content = full_path.read_bytes()
        except OSError as e:
            raise StorageError(f"failed to open file: {e}") from e

        content_type, _ = mimetypes.guess_type(full_path.name)
        return content, content_type or "application/octet-stream"

    def delete(self, storage_path: str) -> None:
        full_path = self._full_path(storage_path)
        try:
            full_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"failed to delete file: {e}") from e

    def generate_url(self, storage_path: str, expiry: timedelta) -> Optional[str]:
        return None


def init_storage(settings: Settings) -> BlobStorage:
    storage_type = settings.blob_storage_type.strip().lower()
    if storage_type != "local":
        logger.warning("Unrecognized storage type '%s', using local storage", storage_type)

    storage = LocalStorage(settings.local_storage_path)
    logger.info("Using local file storage at: %s", storage.base_path)
    return storage
