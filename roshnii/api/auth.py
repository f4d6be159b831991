import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.config import Settings
from roshnii.database import get_db
from roshnii.dependencies import (
    get_app_settings,
    get_oauth_client,
    get_token_service,
    get_used_states,
)
from roshnii.schemas.auth import LoginURLResponse, MessageResponse, RefreshResponse
from roshnii.services.auth_service import AuthFlowError, AuthService
from roshnii.utils.auth import CurrentClaimsOrBearer, extract_bearer_token
from roshnii.utils.cookies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    STATE_COOKIE,
    clear_cookie,
    clear_session_cookies,
    set_cookie,
    set_session_cookies,
)
from roshnii.utils.oauth import GoogleOAuthClient
from roshnii.utils.tokens import RevocationStore, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google", tags=["Authentication"])


def get_auth_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
    oauth: Annotated[GoogleOAuthClient, Depends(get_oauth_client)],
    used_states: Annotated[RevocationStore, Depends(get_used_states)],
) -> AuthService:
    return AuthService(db, settings, tokens, oauth, used_states)


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]


@router.get("/login", response_model=None)
async def login(settings: SettingsDep, auth: AuthServiceDep) -> Response:
    start = auth.begin_login()

    response: Response
    if settings.oauth_login_mode == "json":
        response = JSONResponse(content=LoginURLResponse(auth_url=start.auth_url).model_dump())
    else:
        response = RedirectResponse(start.auth_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    set_cookie(response, settings, STATE_COOKIE, start.state, settings.oauth_state_ttl_seconds)
    return response


@router.get("/callback", response_model=None)
async def callback(
    request: Request,
    settings: SettingsDep,
    auth: AuthServiceDep,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
) -> Response:
    stored_state = request.cookies.get(STATE_COOKIE)

    try:
        session = await auth.complete_login(stored_state, state, code, error, error_description)
    except AuthFlowError as e:
        response = JSONResponse(status_code=e.status_code, content={"error": e.message})
        # The state is single-use whatever the outcome
        clear_cookie(response, settings, STATE_COOKIE)
        return response

    response = RedirectResponse(
        settings.frontend_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT
    )
    clear_cookie(response, settings, STATE_COOKIE)
    set_session_cookies(response, settings, session.access_token, session.refresh_token)
    return response


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    claims: CurrentClaimsOrBearer,
    settings: SettingsDep,
    auth: AuthServiceDep,
) -> MessageResponse:
    access_token = request.cookies.get(ACCESS_TOKEN_COOKIE) or extract_bearer_token(request)
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)

    auth.logout(access_token, refresh_token)

    clear_session_cookies(response, settings)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    response.headers["Pragma"] = "no-cache"

    logger.info("User %s logged out", claims.user_id)
    return MessageResponse(message="Successfully logged out")


@router.post("/refresh", response_model=RefreshResponse, response_model_exclude_none=True)
async def refresh(
    request: Request,
    response: Response,
    settings: SettingsDep,
    auth: AuthServiceDep,
) -> RefreshResponse:
    # Cookie only; refresh tokens are never read from headers
    access_token, user = await auth.refresh_session(request.cookies.get(REFRESH_TOKEN_COOKIE))

    set_session_cookies(response, settings, access_token)
    logger.info("Refreshed access token for user %s", user.id)

    return RefreshResponse(
        message="Token refreshed successfully",
        token=access_token if settings.is_development else None,
    )
