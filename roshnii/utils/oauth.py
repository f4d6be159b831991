import logging
import secrets
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from roshnii.schemas.auth import GoogleIdentity

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
DEFAULT_SCOPES = ("email", "profile")


class OAuthError(Exception):
    """Base class for failures talking to the identity provider."""


class OAuthExchangeError(OAuthError):
    pass


class OAuthIdentityError(OAuthError):
    pass


def generate_state() -> str:
    """Random anti-CSRF value for the login redirect (32 bytes, base64url)."""
    return secrets.token_urlsafe(32)


class GoogleOAuthClient:
    """
    Authorization-code flow against Google.

    Upstream calls share a bounded timeout and are never retried: an
    authorization code can only be exchanged once.
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
            "access_type": "offline",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an upstream access token."""
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            async with self._client() as client:
                resp = await client.post(
                    GOOGLE_TOKEN_URL, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as e:
            raise OAuthExchangeError(f"token request failed: {e}") from e

        if resp.status_code != 200:
            raise OAuthExchangeError(
                f"token endpoint returned {resp.status_code}: {resp.text[:200]}"
            )

        payload = self._json(resp, OAuthExchangeError)
        access_token = payload.get("access_token")
        if not access_token:
            raise OAuthExchangeError("token response missing access_token")
        return access_token

    async def fetch_userinfo(self, access_token: str) -> GoogleIdentity:
        try:
            async with self._client() as client:
                resp = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as e:
            raise OAuthIdentityError(f"failed to request user info: {e}") from e

        if resp.status_code != 200:
            raise OAuthIdentityError(
                f"google API returned non-200 status: {resp.status_code} - {resp.text[:200]}"
            )

        payload = self._json(resp, OAuthIdentityError)

        # Validate required fields
        if not payload.get("sub"):
            raise OAuthIdentityError("google user info missing ID")
        if not payload.get("email"):
            raise OAuthIdentityError("google user info missing email")
        if payload.get("email_verified") not in (True, "true"):
            raise OAuthIdentityError("google email not verified")

        try:
            return GoogleIdentity.model_validate({**payload, "email_verified": True})
        except ValidationError as e:
            raise OAuthIdentityError(f"failed to parse user info: {e}") from e

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _json(resp: httpx.Response, error: type[OAuthError]) -> dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError as e:
            raise error(f"invalid JSON from {resp.request.url}") from e
        if not isinstance(payload, dict):
            raise error(f"unexpected response body from {resp.request.url}")
        return payload
