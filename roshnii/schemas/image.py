from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ImageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    filename: str
    content_type: str
    size: int
    width: int = 0
    height: int = 0
    url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
