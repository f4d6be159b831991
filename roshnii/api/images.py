import logging
from typing import Annotated
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.config import Settings
from roshnii.database import get_db
from roshnii.dependencies import get_app_settings, get_storage
from roshnii.models.image import Image
from roshnii.schemas.image import ImageResponse
from roshnii.services.image_service import (
    ImageNotFoundError,
    ImageService,
    ImageValidationError,
)
from roshnii.services.storage import BlobNotFoundError, BlobStorage, StorageError
from roshnii.utils.auth import CurrentClaims

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/images", tags=["Images"])


def get_image_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    storage: Annotated[BlobStorage, Depends(get_storage)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> ImageService:
    return ImageService(db, storage, max_upload_size=settings.max_upload_size_mb * 1024 * 1024)


ImageServiceDep = Annotated[ImageService, Depends(get_image_service)]


def image_response(service: ImageService, image: Image) -> ImageResponse:
    response = ImageResponse.model_validate(image)
    response.url = service.download_url(image)
    return response


@router.get("", response_model=list[ImageResponse])
async def list_images(claims: CurrentClaims, service: ImageServiceDep) -> list[ImageResponse]:
    images = await service.list_for_user(claims.user_id)
    return [image_response(service, image) for image in images]


@router.post("/upload", response_model=ImageResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    claims: CurrentClaims,
    service: ImageServiceDep,
    file: UploadFile = File(...),
) -> ImageResponse:
    # One byte past the limit is enough to reject an oversize file
    content = await file.read(service.max_upload_size + 1)

    try:
        image = await service.upload(
            claims.user_id, file.filename or "upload", content, file.content_type
        )
    except ImageValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from None
    except StorageError as e:
        logger.error("Failed to store upload for user %s: %s", claims.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store uploaded file",
        ) from None

    return image_response(service, image)


@router.get("/{image_id}", response_model=ImageResponse)
async def get_image(
    image_id: UUID,
    claims: CurrentClaims,
    service: ImageServiceDep,
) -> ImageResponse:
    try:
        image = await service.get(claims.user_id, image_id)
    except ImageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found",
        ) from None
    return image_response(service, image)


@router.get("/{image_id}/download")
async def download_image(
    image_id: UUID,
    claims: CurrentClaims,
    service: ImageServiceDep,
) -> Response:
    try:
        image, content = await service.download(claims.user_id, image_id)
    except (ImageNotFoundError, BlobNotFoundError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found",
        ) from None
    except StorageError as e:
        logger.error("Failed to read image %s: %s", image_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve image",
        ) from None

    return Response(
        content=content,
        media_type=image.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(image.filename)}",
            "Cache-Control": "private, max-age=31536000",
        },
    )


@router.delete("/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_image(
    image_id: UUID,
    claims: CurrentClaims,
    service: ImageServiceDep,
) -> None:
    try:
        await service.delete(claims.user_id, image_id)
    except ImageNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Image not found",
        ) from None
