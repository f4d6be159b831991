import os

# Set test environment before the application reads its settings
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./roshnii_test.db"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["LOCAL_STORAGE_PATH"] = "/tmp/roshnii_test_uploads"

from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import roshnii.models  # noqa: F401
from roshnii.config import Settings
from roshnii.database import Base
from roshnii.models import User
from roshnii.utils.tokens import TokenService
from tests._helpers import FakeGoogle, build_app, cookie_header


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        environment="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        google_client_id="test-client-id",
        google_client_secret="test-client-secret",
        local_storage_path=str(tmp_path / "uploads"),
        frontend_url="http://localhost:5173",
    )


@pytest_asyncio.fixture(scope="function")
async def async_engine(settings: Settings):
    """Create a file-backed SQLite engine for each test."""
    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest.fixture
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def app(settings: Settings, session_maker, google: FakeGoogle) -> FastAPI:
    return build_app(settings, session_maker, google)


@pytest_asyncio.fixture(scope="function")
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client against the per-test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def token_service(app: FastAPI) -> TokenService:
    return app.state.token_service


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user with unique identifiers."""
    unique_id = uuid4()
    user = User(
        id=unique_id,
        google_id=f"google-{unique_id}",
        email=f"test-{unique_id}@example.com",
        name="Test User",
        auth_provider="google",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    unique_id = uuid4()
    user = User(
        id=unique_id,
        email=f"other-{unique_id}@example.com",
        name="Other User",
        auth_provider="dev",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def auth_cookies(test_user: User, token_service: TokenService) -> dict[str, str]:
    """Cookie header carrying a valid access token for test_user."""
    return cookie_header(auth_token=token_service.issue_access_token(test_user))


@pytest.fixture
def other_auth_cookies(other_user: User, token_service: TokenService) -> dict[str, str]:
    return cookie_header(auth_token=token_service.issue_access_token(other_user))
