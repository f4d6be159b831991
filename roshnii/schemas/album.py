from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AlbumCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)


class AlbumUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)


class AlbumResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    description: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AddImageRequest(BaseModel):
    image_id: UUID
