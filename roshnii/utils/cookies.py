from fastapi import Response

from roshnii.config import Settings

# Names are shared with the frontend
STATE_COOKIE = "oauthstate"
ACCESS_TOKEN_COOKIE = "auth_token"
REFRESH_TOKEN_COOKIE = "refresh_token"


def set_cookie(
    response: Response,
    settings: Settings,
    name: str,
    value: str,
    max_age: int,
) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )


def clear_cookie(response: Response, settings: Settings, name: str) -> None:
    response.delete_cookie(
        key=name,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )


def set_session_cookies(
    response: Response,
    settings: Settings,
    access_token: str,
    refresh_token: str | None = None,
) -> None:
    set_cookie(
        response,
        settings,
        ACCESS_TOKEN_COOKIE,
        access_token,
        int(settings.token_duration.total_seconds()),
    )
    if refresh_token is not None:
        set_cookie(
            response,
            settings,
            REFRESH_TOKEN_COOKIE,
            refresh_token,
            int(settings.refresh_token_duration.total_seconds()),
        )


def clear_session_cookies(response: Response, settings: Settings) -> None:
    clear_cookie(response, settings, ACCESS_TOKEN_COOKIE)
    clear_cookie(response, settings, REFRESH_TOKEN_COOKIE)
