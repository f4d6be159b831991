import logging
import uuid

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.models.album import Album, AlbumImage
from roshnii.models.image import Image
from roshnii.schemas.album import AlbumCreate, AlbumUpdate
from roshnii.services.image_service import ImageNotFoundError

logger = logging.getLogger(__name__)


class AlbumNotFoundError(Exception):
    pass


class AlbumImageNotFoundError(Exception):
    pass


class AlbumService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: uuid.UUID, data: AlbumCreate) -> Album:
        album = Album(user_id=user_id, name=data.name, description=data.description)
        self.db.add(album)
        await self.db.flush()
        await self.db.refresh(album)
        logger.info("Created album %s for user %s", album.id, user_id)
        return album

    async def list_for_user(self, user_id: uuid.UUID) -> list[Album]:
        result = await self.db.execute(
            select(Album).where(Album.user_id == user_id).order_by(Album.created_at.desc())
        )
        return list(result.scalars().all())

    async def get(self, user_id: uuid.UUID, album_id: uuid.UUID) -> Album:
        result = await self.db.execute(
            select(Album).where(Album.id == album_id, Album.user_id == user_id)
        )
        album = result.scalar_one_or_none()
        if album is None:
            raise AlbumNotFoundError("Album not found")
        return album

    async def update(self, user_id: uuid.UUID, album_id: uuid.UUID, data: AlbumUpdate) -> Album:
        album = await self.get(user_id, album_id)
        for field, value in data.model_dump().items():
            setattr(album, field, value)
        await self.db.flush()
        await self.db.refresh(album)
        return album

    async def delete(self, user_id: uuid.UUID, album_id: uuid.UUID) -> None:
        album = await self.get(user_id, album_id)
        # Images stay; only their membership goes
        await self.db.execute(delete(AlbumImage).where(AlbumImage.album_id == album.id))
        await self.db.execute(delete(Album).where(Album.id == album.id))
        await self.db.flush()
        logger.info("Deleted album %s for user %s", album_id, user_id)

    async def list_images(self, user_id: uuid.UUID, album_id: uuid.UUID) -> list[Image]:
        await self.get(user_id, album_id)
        result = await self.db.execute(
            select(Image)
            .join(AlbumImage, AlbumImage.image_id == Image.id)
            .where(AlbumImage.album_id == album_id, Image.user_id == user_id)
            .order_by(AlbumImage.added_at.desc())
        )
        return list(result.scalars().all())

    async def add_image(
        self, user_id: uuid.UUID, album_id: uuid.UUID, image_id: uuid.UUID
    ) -> None:
        """Add one of the user's images to one of their albums. Re-adding is a no-op."""
        await self.get(user_id, album_id)

        image = await self.db.execute(
            select(Image.id).where(Image.id == image_id, Image.user_id == user_id)
        )
        if image.scalar_one_or_none() is None:
            raise ImageNotFoundError("Image not found")

        existing = await self.db.get(AlbumImage, (album_id, image_id))
        if existing is None:
            self.db.add(AlbumImage(album_id=album_id, image_id=image_id))

        await self._touch(album_id)
        logger.info("Added image %s to album %s", image_id, album_id)

    async def remove_image(
        self, user_id: uuid.UUID, album_id: uuid.UUID, image_id: uuid.UUID
    ) -> None:
        await self.get(user_id, album_id)

        result = await self.db.execute(
            delete(AlbumImage).where(
                AlbumImage.album_id == album_id, AlbumImage.image_id == image_id
            )
        )
        if result.rowcount == 0:
            raise AlbumImageNotFoundError("Image not found in album")

        await self._touch(album_id)
        logger.info("Removed image %s from album %s", image_id, album_id)

    async def _touch(self, album_id: uuid.UUID) -> None:
        await self.db.execute(
            update(Album)
            .where(Album.id == album_id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
