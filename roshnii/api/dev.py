from fastapi import APIRouter, Response

from roshnii.api.auth import AuthServiceDep, SettingsDep
from roshnii.schemas.auth import DevLoginRequest, DevLoginResponse
from roshnii.utils.cookies import set_session_cookies

# Only mounted when ENVIRONMENT=development
router = APIRouter(prefix="/auth/dev", tags=["Development"])


@router.post("/login", response_model=DevLoginResponse)
async def dev_login(
    body: DevLoginRequest,
    response: Response,
    settings: SettingsDep,
    auth: AuthServiceDep,
) -> DevLoginResponse:
    session = await auth.dev_login(body.email, body.name)

    set_session_cookies(response, settings, session.access_token, session.refresh_token)

    return DevLoginResponse(
        message="Development login successful",
        user_id=session.user.id,
        email=session.user.email,
        expires_in=int(settings.token_duration.total_seconds()),
        token=session.access_token,
        refresh_token=session.refresh_token,
    )
