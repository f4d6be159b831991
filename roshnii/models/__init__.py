"""Database models."""

from roshnii.models.album import Album, AlbumImage
from roshnii.models.image import Image
from roshnii.models.user import User

__all__ = [
    "Album",
    "AlbumImage",
    "Image",
    "User",
]
