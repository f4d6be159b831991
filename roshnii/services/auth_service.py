"""
Google sign-in and session lifecycle.

One AuthService is built per request. The anti-CSRF state value lives in a
short-lived cookie and is handed back to complete_login by the router; the
server only remembers which values were already used, until they expire.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.config import Settings
from roshnii.models.user import User
from roshnii.services.user_service import UserEmailConflictError, UserService
from roshnii.utils.oauth import (
    GoogleOAuthClient,
    OAuthError,
    OAuthIdentityError,
    generate_state,
)
from roshnii.utils.tokens import (
    RevocationStore,
    TokenError,
    TokenParseError,
    TokenService,
    TokenSigningError,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_DEV_USER_NAME = "Dev User"


class AuthFlowError(Exception):
    """A login, refresh or logout step failed; rendered as {"error": message}."""

    status_code: int = 500
    default_message: str = "Authentication failed"
    # Drop the refresh-token cookie along with the error response
    clear_refresh_cookie: bool = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidStateError(AuthFlowError):
    status_code = 401
    default_message = "Invalid OAuth state."


class ProviderDeniedError(AuthFlowError):
    status_code = 401
    default_message = "Authorization failed"


class MissingCodeError(AuthFlowError):
    status_code = 400
    default_message = "Authorization code missing."


class ExchangeFailedError(AuthFlowError):
    status_code = 502
    default_message = "Failed to process login."


class IdentityIncompleteError(AuthFlowError):
    status_code = 502
    default_message = "Failed to retrieve user information."


class UserPersistenceError(AuthFlowError):
    status_code = 500
    default_message = "Failed to save user data."


class SessionIssueError(AuthFlowError):
    status_code = 500
    default_message = "Failed to complete login."


class NoRefreshTokenError(AuthFlowError):
    status_code = 401
    default_message = "Refresh token not provided"


class InvalidRefreshTokenError(AuthFlowError):
    status_code = 401
    default_message = "Invalid or expired refresh token"
    clear_refresh_cookie = True


class UserGoneError(AuthFlowError):
    status_code = 401
    default_message = "User not found"


class ProviderNotConfiguredError(AuthFlowError):
    status_code = 503
    default_message = "Google login is not configured"


class DevLoginDisabledError(AuthFlowError):
    status_code = 403
    default_message = "Development login routes are disabled in production"


@dataclass
class LoginStart:
    state: str
    auth_url: str


@dataclass
class SessionTokens:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        tokens: TokenService,
        oauth: GoogleOAuthClient,
        used_states: RevocationStore,
    ):
        self.db = db
        self.settings = settings
        self.tokens = tokens
        self.oauth = oauth
        self.used_states = used_states
        self.users = UserService(db)

    def begin_login(self) -> LoginStart:
        if not self.oauth.configured:
            raise ProviderNotConfiguredError()

        state = generate_state()
        return LoginStart(state=state, auth_url=self.oauth.authorization_url(state))

    async def complete_login(
        self,
        stored_state: Optional[str],
        query_state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> SessionTokens:
        """
        Finish the handshake after Google redirects back.

        Steps run in a fixed order: state, provider error, code, exchange,
        userinfo, user upsert, token issue. Nothing is persisted client-side
        unless every step succeeds.
        """
        if not stored_state:
            logger.warning("OAuth callback: state cookie not found")
            raise InvalidStateError()

        # A state value is burned on first sight, even if this callback fails
        if self.used_states.is_revoked(stored_state):
            logger.warning("OAuth callback: state value already used")
            raise InvalidStateError()
        self.used_states.revoke(
            stored_state, utcnow() + timedelta(seconds=self.settings.oauth_state_ttl_seconds)
        )

        if not query_state or not secrets.compare_digest(
            query_state.encode(), stored_state.encode()
        ):
            logger.warning("OAuth callback: state parameter does not match cookie")
            raise InvalidStateError()

        if error:
            logger.warning("OAuth callback: Google returned %s - %s", error, error_description or "")
            raise ProviderDeniedError(f"Authorization failed: {error}")

        if not code:
            logger.warning("OAuth callback: no code parameter in the request")
            raise MissingCodeError()

        try:
            upstream_token = await self.oauth.exchange_code(code)
        except OAuthError as e:
            logger.error("OAuth callback: failed to exchange code for token: %s", e)
            raise ExchangeFailedError() from e

        try:
            identity = await self.oauth.fetch_userinfo(upstream_token)
        except OAuthIdentityError as e:
            logger.error("OAuth callback: failed to get user info from Google: %s", e)
            raise IdentityIncompleteError() from e

        logger.info("OAuth callback: Google user %s (%s)", identity.sub, identity.email)

        try:
            user = await self.users.find_or_create_by_google_identity(identity)
        except (SQLAlchemyError, UserEmailConflictError) as e:
            logger.error("OAuth callback: database operation failed: %s", e)
            await self.db.rollback()
            raise UserPersistenceError() from e

        session = self._issue_pair(user, SessionIssueError())
        logger.info("OAuth successful for user %s (%s)", user.email, user.id)
        return session

    async def refresh_session(self, refresh_token: Optional[str]) -> tuple[str, User]:
        """Mint a new access token. The refresh token itself is left as is."""
        if not refresh_token:
            raise NoRefreshTokenError()

        try:
            claims = self.tokens.validate_refresh_token(refresh_token)
        except TokenError as e:
            logger.info("Refresh token validation failed: %s", e)
            raise InvalidRefreshTokenError() from e

        user = await self.users.get_by_id(claims.user_id)
        if user is None:
            logger.warning("Refresh for user %s which no longer exists", claims.user_id)
            raise UserGoneError()

        try:
            access_token = self.tokens.issue_access_token(user)
        except TokenSigningError as e:
            logger.error("Failed to generate new access token: %s", e)
            raise SessionIssueError("Failed to generate access token") from e

        return access_token, user

    async def dev_login(self, email: str, name: Optional[str] = None) -> SessionTokens:
        if not self.settings.is_development:
            raise DevLoginDisabledError()

        try:
            user = await self.users.find_or_create_by_email(
                email, name or DEFAULT_DEV_USER_NAME, provider="dev"
            )
        except SQLAlchemyError as e:
            logger.error("Dev login: failed to find/create user %s: %s", email, e)
            await self.db.rollback()
            raise UserPersistenceError("Failed to process login") from e

        session = self._issue_pair(user, SessionIssueError("Failed to generate session"))
        logger.info("Dev login: issued tokens for user %s (%s)", user.email, user.id)
        return session

    def logout(self, access_token: Optional[str], refresh_token: Optional[str]) -> None:
        """Revoke whichever tokens were presented. Never fails."""
        for kind, token in (("access", access_token), ("refresh", refresh_token)):
            if not token:
                continue
            try:
                self.tokens.revoke(token)
            except TokenParseError as e:
                logger.warning("Failed to blacklist %s token: %s", kind, e)

    def _issue_pair(self, user: User, failure: AuthFlowError) -> SessionTokens:
        try:
            access_token = self.tokens.issue_access_token(user)
            refresh_token = self.tokens.issue_refresh_token(user)
        except TokenSigningError as e:
            logger.error("Failed to generate tokens for user %s: %s", user.id, e)
            raise failure from e
        return SessionTokens(user=user, access_token=access_token, refresh_token=refresh_token)
