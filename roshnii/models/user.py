import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roshnii.database import Base

if TYPE_CHECKING:
    from roshnii.models.album import Album
    from roshnii.models.image import Image


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Google's subject identifier; NULL for accounts created through dev login
    google_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    picture_url: Mapped[Optional[str]] = mapped_column(String(1024))
    auth_provider: Mapped[str] = mapped_column(String(20), nullable=False, default="google")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    images: Mapped[list["Image"]] = relationship(
        "Image", back_populates="user", cascade="all, delete-orphan"
    )
    albums: Mapped[list["Album"]] = relationship(
        "Album", back_populates="user", cascade="all, delete-orphan"
    )
