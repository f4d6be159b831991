from typing import Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

TokenKind = Literal["access", "refresh"]


class TokenClaims(BaseModel):
    """Decoded payload of a session token."""

    user_id: UUID
    email: str
    name: str | None = None
    picture_url: str | None = None
    token_type: TokenKind
    exp: int  # Expiration timestamp
    iat: int  # Issued at timestamp
    nbf: int | None = None
    iss: str
    sub: str | None = None


class GoogleIdentity(BaseModel):
    """Profile returned by Google's userinfo endpoint."""

    sub: str
    email: str
    email_verified: bool = False
    name: str = ""
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None
    locale: str | None = None


class LoginURLResponse(BaseModel):
    auth_url: str


class MessageResponse(BaseModel):
    message: str


class RefreshResponse(BaseModel):
    message: str
    token: str | None = Field(None, description="Only returned in development")


class DevLoginRequest(BaseModel):
    email: EmailStr
    name: str | None = Field(None, max_length=255)


class DevLoginResponse(BaseModel):
    message: str
    user_id: UUID
    email: str
    expires_in: int
    dev_note: str = "TOKENS PROVIDED FOR DEVELOPMENT TESTING ONLY"
    token: str
    refresh_token: str
