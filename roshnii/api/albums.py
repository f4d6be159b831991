from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.api.images import ImageServiceDep, image_response
from roshnii.database import get_db
from roshnii.schemas.album import AddImageRequest, AlbumCreate, AlbumResponse, AlbumUpdate
from roshnii.schemas.auth import MessageResponse
from roshnii.schemas.image import ImageResponse
from roshnii.services.album_service import (
    AlbumImageNotFoundError,
    AlbumNotFoundError,
    AlbumService,
)
from roshnii.services.image_service import ImageNotFoundError
from roshnii.utils.auth import CurrentClaims

router = APIRouter(prefix="/albums", tags=["Albums"])


def get_album_service(db: Annotated[AsyncSession, Depends(get_db)]) -> AlbumService:
    return AlbumService(db)


AlbumServiceDep = Annotated[AlbumService, Depends(get_album_service)]


def _album_not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Album not found",
    )


@router.post("", response_model=AlbumResponse, status_code=status.HTTP_201_CREATED)
async def create_album(
    data: AlbumCreate,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> AlbumResponse:
    album = await service.create(claims.user_id, data)
    return AlbumResponse.model_validate(album)


@router.get("", response_model=list[AlbumResponse])
async def list_albums(claims: CurrentClaims, service: AlbumServiceDep) -> list[AlbumResponse]:
    albums = await service.list_for_user(claims.user_id)
    return [AlbumResponse.model_validate(album) for album in albums]


@router.get("/{album_id}", response_model=AlbumResponse)
async def get_album(
    album_id: UUID,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> AlbumResponse:
    try:
        album = await service.get(claims.user_id, album_id)
    except AlbumNotFoundError:
        raise _album_not_found() from None
    return AlbumResponse.model_validate(album)


@router.put("/{album_id}", response_model=AlbumResponse)
async def update_album(
    album_id: UUID,
    data: AlbumUpdate,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> AlbumResponse:
    try:
        album = await service.update(claims.user_id, album_id, data)
    except AlbumNotFoundError:
        raise _album_not_found() from None
    return AlbumResponse.model_validate(album)


@router.delete("/{album_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_album(
    album_id: UUID,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> None:
    try:
        await service.delete(claims.user_id, album_id)
    except AlbumNotFoundError:
        raise _album_not_found() from None


@router.get("/{album_id}/images", response_model=list[ImageResponse])
async def list_album_images(
    album_id: UUID,
    claims: CurrentClaims,
    service: AlbumServiceDep,
    images: ImageServiceDep,
) -> list[ImageResponse]:
    try:
        album_images = await service.list_images(claims.user_id, album_id)
    except AlbumNotFoundError:
        raise _album_not_found() from None
    return [image_response(images, image) for image in album_images]


@router.post("/{album_id}/images", response_model=MessageResponse)
async def add_image_to_album(
    album_id: UUID,
    data: AddImageRequest,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> MessageResponse:
    try:
        await service.add_image(claims.user_id, album_id, data.image_id)
    except AlbumNotFoundError:
        raise _album_not_found() from None
    except ImageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found",
        ) from None
    return MessageResponse(message="Image added to album")


@router.delete("/{album_id}/images/{image_id}", response_model=MessageResponse)
async def remove_image_from_album(
    album_id: UUID,
    image_id: UUID,
    claims: CurrentClaims,
    service: AlbumServiceDep,
) -> MessageResponse:
    try:
        await service.remove_image(claims.user_id, album_id, image_id)
    except AlbumNotFoundError:
        raise _album_not_found() from None
    except AlbumImageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found in album",
        ) from None
    return MessageResponse(message="Image removed from album")
