"""
Session token issuance, validation and revocation.

Access and refresh tokens are HS256 JWTs signed with two independent
secrets, so a leaked access secret cannot be used to mint refresh tokens.
Revoked tokens are kept in a RevocationStore until their own expiry.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from jose import jwt
from jose.exceptions import JOSEError
from pydantic import ValidationError

from roshnii.config import DEFAULT_TOKEN_DURATION, REFRESH_DURATION_FACTOR
from roshnii.schemas.auth import TokenClaims, TokenKind

logger = logging.getLogger(__name__)

ISSUER = "roshnii-service"
ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenError(Exception):
    """Base class for session token failures."""


class BlacklistedTokenError(TokenError):
    pass


class ExpiredTokenError(TokenError):
    pass


class NotYetValidTokenError(TokenError):
    pass


class MalformedTokenError(TokenError):
    pass


class WrongTokenKindError(TokenError):
    pass


class MissingSubjectError(TokenError):
    pass


class TokenSigningError(TokenError):
    pass


class TokenParseError(TokenError):
    pass


class TokenSubject(Protocol):
    """Anything a token can be issued for (the User model in practice)."""

    id: Any
    email: str
    name: str
    picture_url: Optional[str]


class RevocationStore:
    """
    In-memory denylist mapping raw token strings to their expiry.

    Entries whose expiry has passed are inert; they are dropped lazily on
    lookup and swept on every insert. Contents do not survive a restart.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utcnow
        self._entries: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, token: str, expires_at: datetime) -> None:
        with self._lock:
            self._entries[token] = expires_at
            self._purge_locked()

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            expires_at = self._entries.get(token)
            if expires_at is None:
                return False
            if self._clock() < expires_at:
                return True
            del self._entries[token]
            return False

    def purge(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [token for token, expires_at in self._entries.items() if expires_at <= now]
        for token in expired:
            del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class TokenService:
    def __init__(
        self,
        secret: str,
        refresh_secret: str,
        access_duration: timedelta = DEFAULT_TOKEN_DURATION,
        revocations: Optional[RevocationStore] = None,
        clock: Optional[Clock] = None,
        issuer: str = ISSUER,
    ):
        if not secret:
            raise ValueError("JWT secret cannot be empty")
        if not refresh_secret:
            raise ValueError("JWT refresh secret cannot be empty")

        self._secret = secret
        self._refresh_secret = refresh_secret
        self._clock = clock or utcnow
        self.access_duration = access_duration
        self.refresh_duration = access_duration * REFRESH_DURATION_FACTOR
        self.revocations = revocations if revocations is not None else RevocationStore(self._clock)
        self.issuer = issuer

    def issue_access_token(self, user: TokenSubject) -> str:
        now = self._clock()
        claims = self._build_claims(user, "access", now, now + self.access_duration)
        claims["name"] = user.name or None
        claims["picture_url"] = user.picture_url
        return self._sign(claims, self._secret)

    def issue_refresh_token(self, user: TokenSubject) -> str:
        now = self._clock()
        claims = self._build_claims(user, "refresh", now, now + self.refresh_duration)
        return self._sign(claims, self._refresh_secret)

    def validate_access_token(self, token: str) -> TokenClaims:
        return self._validate(token, self._secret, "access")

    def validate_refresh_token(self, token: str) -> TokenClaims:
        return self._validate(token, self._refresh_secret, "refresh")

    def revoke(self, token: str) -> datetime:
        """
        Add a token to the revocation store until it expires.

        The signature is not checked: this only denylists a string, it does
        not authenticate anybody.
        """
        try:
            payload = jwt.get_unverified_claims(token)
        except JOSEError as e:
            raise TokenParseError(f"failed to parse token for blacklisting: {e}") from e

        expires_at = self._clock() + self.access_duration
        exp = payload.get("exp")
        if isinstance(exp, (int, float)):
            try:
                expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                # Unverified input; an out-of-range exp keeps the fallback expiry
                logger.warning("Ignoring out-of-range exp claim while revoking token")

        self.revocations.revoke(token, expires_at)
        return expires_at

    def is_revoked(self, token: str) -> bool:
        return self.revocations.is_revoked(token)

    def _build_claims(
        self,
        user: TokenSubject,
        kind: TokenKind,
        now: datetime,
        expires_at: datetime,
    ) -> dict[str, Any]:
        return {
            "user_id": str(user.id),
            "email": user.email,
            "token_type": kind,
            "exp": int(expires_at.timestamp()),
            "iat": int(now.timestamp()),
            "nbf": int(now.timestamp()),
            "iss": self.issuer,
            "sub": str(user.id),
        }

    def _sign(self, claims: dict[str, Any], key: str) -> str:
        payload = {k: v for k, v in claims.items() if v is not None}
        try:
            return jwt.encode(payload, key, algorithm=ALGORITHM)
        except JOSEError as e:
            raise TokenSigningError(f"failed to sign {claims['token_type']} token: {e}") from e

    def _validate(self, token: str, key: str, kind: TokenKind) -> TokenClaims:
        # Revocation is checked before any parsing
        if self.revocations.is_revoked(token):
            raise BlacklistedTokenError(f"{kind} token is blacklisted")

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                options={"verify_exp": False, "verify_nbf": False},
            )
        except JOSEError as e:
            raise MalformedTokenError(f"failed to parse {kind} token: {e}") from e

        now = self._clock().timestamp()
        nbf = payload.get("nbf")
        if nbf is not None:
            if not isinstance(nbf, (int, float)):
                raise MalformedTokenError("invalid nbf claim")
            if now < nbf:
                raise NotYetValidTokenError(f"{kind} token not yet valid")

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise MalformedTokenError("missing exp claim")
        if now >= exp:
            raise ExpiredTokenError(f"{kind} token expired")

        if payload.get("token_type") != kind:
            raise WrongTokenKindError(f"invalid token type: expected {kind} token")

        if not payload.get("user_id"):
            raise MissingSubjectError("invalid token: missing user ID")
        if kind == "access" and not payload.get("email"):
            raise MalformedTokenError("invalid token: missing email")

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as e:
            raise MalformedTokenError(f"invalid {kind} token claims") from e
