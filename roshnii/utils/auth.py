import logging
from typing import Annotated, Optional

from fastapi import Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.config import Settings
from roshnii.database import get_db
from roshnii.dependencies import get_app_settings, get_token_service
from roshnii.models.user import User
from roshnii.schemas.auth import TokenClaims
from roshnii.services.user_service import UserService
from roshnii.utils.cookies import ACCESS_TOKEN_COOKIE
from roshnii.utils.tokens import (
    BlacklistedTokenError,
    ExpiredTokenError,
    TokenError,
    TokenService,
)

logger = logging.getLogger(__name__)

SESSION_CLAIMS_KEY = "session_claims"


class SessionError(Exception):
    """Rejected request; rendered as {"error": message} by the app."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_401_UNAUTHORIZED,
        clear_access_cookie: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.clear_access_cookie = clear_access_cookie


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    parts = header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def rejection_message(error: TokenError) -> str:
    # Never echo parser or signature details back to the client
    if isinstance(error, BlacklistedTokenError):
        return "Session has been invalidated, please log in again"
    if isinstance(error, ExpiredTokenError):
        return "Session expired, please refresh your token or log in again"
    return "Invalid authentication token"


class SessionGuard:
    """
    Validate the access token before a protected handler runs.

    The token comes from the access-token cookie. Routes built with
    allow_bearer=True also accept an "Authorization: Bearer" header, but
    only when the deployment enables it (always on in development).
    """

    def __init__(self, allow_bearer: bool = False):
        self.allow_bearer = allow_bearer

    async def __call__(
        self,
        request: Request,
        settings: Annotated[Settings, Depends(get_app_settings)],
        tokens: Annotated[TokenService, Depends(get_token_service)],
    ) -> TokenClaims:
        token = request.cookies.get(ACCESS_TOKEN_COOKIE)
        if not token and self.allow_bearer and settings.bearer_enabled:
            token = extract_bearer_token(request)

        if not token:
            raise SessionError("Authentication required", clear_access_cookie=False)

        try:
            claims = tokens.validate_access_token(token)
        except TokenError as e:
            logger.info("Token validation failed on %s %s: %s", request.method, request.url.path, e)
            raise SessionError(rejection_message(e)) from None

        setattr(request.state, SESSION_CLAIMS_KEY, claims)
        return claims


def get_session_claims(request: Request) -> Optional[TokenClaims]:
    """Claims injected by SessionGuard, or None if absent."""
    claims = getattr(request.state, SESSION_CLAIMS_KEY, None)
    if not isinstance(claims, TokenClaims):
        return None
    return claims


require_session = SessionGuard()
require_session_or_bearer = SessionGuard(allow_bearer=True)


async def get_current_user(
    claims: Annotated[TokenClaims, Depends(require_session)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Load the user behind the session; a deleted account is treated as logged out."""
    user = await UserService(db).get_by_id(claims.user_id)
    if user is None:
        raise SessionError("User not found")
    return user


# Type aliases for dependency injection
CurrentClaims = Annotated[TokenClaims, Depends(require_session)]
CurrentClaimsOrBearer = Annotated[TokenClaims, Depends(require_session_or_bearer)]
CurrentUser = Annotated[User, Depends(get_current_user)]
