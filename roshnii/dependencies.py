from fastapi import Request

from roshnii.config import Settings
from roshnii.services.storage import BlobStorage
from roshnii.utils.oauth import GoogleOAuthClient
from roshnii.utils.tokens import RevocationStore, TokenService


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"Application state '{name}' is not initialised")
    return value


def get_app_settings(request: Request) -> Settings:
    return _state(request, "settings")


def get_token_service(request: Request) -> TokenService:
    return _state(request, "token_service")


def get_oauth_client(request: Request) -> GoogleOAuthClient:
    return _state(request, "oauth_client")


def get_storage(request: Request) -> BlobStorage:
    return _state(request, "storage")


def get_used_states(request: Request) -> RevocationStore:
    return _state(request, "used_states")
