"""Service layer for business logic."""

from roshnii.services.album_service import AlbumService
from roshnii.services.auth_service import AuthService
from roshnii.services.image_service import ImageService
from roshnii.services.user_service import UserService

__all__ = [
    "AlbumService",
    "AuthService",
    "ImageService",
    "UserService",
]
