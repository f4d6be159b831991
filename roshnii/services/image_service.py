import logging
import uuid
from datetime import timedelta
from io import BytesIO
from typing import Optional

from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.models.album import AlbumImage
from roshnii.models.image import Image
from roshnii.services.storage import BlobStorage, StorageError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
}

DEFAULT_MAX_UPLOAD_SIZE = 20 * 1024 * 1024
DOWNLOAD_URL_EXPIRY = timedelta(minutes=15)


class ImageNotFoundError(Exception):
    pass


class ImageValidationError(ValueError):
    pass


class ImageService:
    def __init__(
        self,
        db: AsyncSession,
        storage: BlobStorage,
        max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE,
    ):
        self.db = db
        self.storage = storage
        self.max_upload_size = max_upload_size

    async def list_for_user(self, user_id: uuid.UUID) -> list[Image]:
        result = await self.db.execute(
            select(Image).where(Image.user_id == user_id).order_by(Image.created_at.desc())
        )
        return list(result.scalars().all())

    async def get(self, user_id: uuid.UUID, image_id: uuid.UUID) -> Image:
        """Fetch an image owned by the user. Someone else's image is reported as missing."""
        result = await self.db.execute(
            select(Image).where(Image.id == image_id, Image.user_id == user_id)
        )
        image = result.scalar_one_or_none()
        if image is None:
            raise ImageNotFoundError("Image not found")
        return image

    def validate_upload(self, data: bytes, content_type: Optional[str]) -> tuple[int, int]:
        """Check an upload and return its (width, height)."""
        if not data:
            raise ImageValidationError("Uploaded file is empty")

        if len(data) > self.max_upload_size:
            limit_mb = self.max_upload_size // (1024 * 1024)
            raise ImageValidationError(f"File size exceeds limit of {limit_mb} MB")

        if content_type not in ALLOWED_MIME_TYPES:
            raise ImageValidationError(f"Unsupported file type: {content_type}")

        try:
            with PILImage.open(BytesIO(data)) as image:
                return image.size
        except (UnidentifiedImageError, OSError) as e:
            raise ImageValidationError("Uploaded file is not a valid image") from e

    async def upload(
        self,
        user_id: uuid.UUID,
        filename: str,
        data: bytes,
        content_type: Optional[str],
    ) -> Image:
        width, height = self.validate_upload(data, content_type)

        storage_path = self.storage.upload(filename, user_id, data, content_type)

        image = Image(
            user_id=user_id,
            filename=filename,
            storage_path=storage_path,
            content_type=content_type,
            size=len(data),
            width=width,
            height=height,
        )
        self.db.add(image)
        try:
            await self.db.flush()
        except SQLAlchemyError:
            logger.exception("Error saving image metadata for %s, removing stored file", storage_path)
            self._delete_blob(storage_path)
            raise

        await self.db.refresh(image)
        logger.info("Saved image %s for user %s (%dx%d, %d bytes)", image.id, user_id, width, height, image.size)
        return image

    async def download(self, user_id: uuid.UUID, image_id: uuid.UUID) -> tuple[Image, bytes]:
        image = await self.get(user_id, image_id)
        content, _ = self.storage.download(image.storage_path)
        return image, content

    async def delete(self, user_id: uuid.UUID, image_id: uuid.UUID) -> None:
        image = await self.get(user_id, image_id)
        storage_path = image.storage_path

        await self.db.execute(delete(AlbumImage).where(AlbumImage.image_id == image.id))
        await self.db.execute(delete(Image).where(Image.id == image.id))
        await self.db.flush()

        self._delete_blob(storage_path)
        logger.info("Deleted image %s for user %s", image_id, user_id)

    def download_url(self, image: Image) -> str:
        url = self.storage.generate_url(image.storage_path, DOWNLOAD_URL_EXPIRY)
        return url or f"/api/images/{image.id}/download"

    def _delete_blob(self, storage_path: str) -> None:
        try:
            self.storage.delete(storage_path)
        except StorageError as e:
            logger.error("Failed to delete stored file %s: %s", storage_path, e)
