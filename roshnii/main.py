import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from roshnii.api.dev import router as dev_router
from roshnii.api.router import api_router
from roshnii.config import Settings, configure_logging, get_settings
from roshnii.database import engine, init_models
from roshnii.services.auth_service import AuthFlowError
from roshnii.services.storage import init_storage
from roshnii.utils.auth import SessionError
from roshnii.utils.cookies import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, clear_cookie
from roshnii.utils.oauth import GoogleOAuthClient
from roshnii.utils.tokens import RevocationStore, TokenService

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    # Refuses to start without signing secrets
    settings.validate_security()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting %s (environment=%s, auth mode=%s, login mode=%s)",
            settings.app_name,
            settings.environment,
            settings.get_auth_mode(),
            settings.oauth_login_mode,
        )
        await init_models()
        yield
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description="Personal photo library with Google sign-in",
        version="0.1.0",
        lifespan=lifespan,
    )

    revocations = RevocationStore()
    app.state.settings = settings
    app.state.revocations = revocations
    app.state.token_service = TokenService(
        settings.jwt_secret,
        settings.jwt_refresh_secret,
        access_duration=settings.token_duration,
        revocations=revocations,
    )
    app.state.oauth_client = GoogleOAuthClient(
        settings.google_client_id,
        settings.google_client_secret,
        settings.redirect_url,
        timeout=settings.oauth_timeout_seconds,
    )
    app.state.used_states = RevocationStore()
    app.state.storage = init_storage(settings)
    logger.info("Using Google OAuth redirect URL: %s", settings.redirect_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
    )

    app.include_router(api_router, prefix="/api")
    if settings.is_development:
        logger.warning("Development login routes enabled at /api/auth/dev")
        app.include_router(dev_router, prefix="/api")

    register_exception_handlers(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthFlowError)
    async def auth_flow_exception_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.message})
        if exc.clear_refresh_cookie:
            clear_cookie(response, request.app.state.settings, REFRESH_TOKEN_COOKIE)
        return response

    @app.exception_handler(SessionError)
    async def session_exception_handler(request: Request, exc: SessionError) -> JSONResponse:
        response = JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        )
        if exc.clear_access_cookie:
            clear_cookie(response, request.app.state.settings, ACCESS_TOKEN_COOKIE)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append({"field": field, "message": error["msg"]})

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "Invalid request body",
                "errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)

        # Don't expose internal error details
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "An unexpected error occurred. Please try again later.",
            },
        )


app = create_app()
