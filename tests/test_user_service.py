import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from roshnii.models import User
from roshnii.schemas.auth import GoogleIdentity
from roshnii.services.user_service import UserEmailConflictError, UserService
from tests._helpers import TEST_EMAIL, TEST_GOOGLE_SUB


def make_identity(**overrides) -> GoogleIdentity:
    data = {
        "sub": TEST_GOOGLE_SUB,
        "email": TEST_EMAIL,
        "email_verified": True,
        "name": "Alice Example",
        "picture": "https://example.com/alice.png",
    }
    data.update(overrides)
    return GoogleIdentity(**data)


def miss_once(lookup):
    """Wrap a lookup so its first call pretends the row does not exist yet."""
    calls = {"count": 0}

    async def wrapper(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await lookup(*args, **kwargs)

    return wrapper


async def count_users(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(User))
    return result.scalar_one()


class TestGoogleIdentity:
    """Tests for resolving Google identities to local users."""

    @pytest.mark.asyncio
    async def test_creates_user_on_first_login(self, db_session: AsyncSession):
        service = UserService(db_session)

        user = await service.find_or_create_by_google_identity(make_identity())

        assert user.id is not None
        assert user.google_id == TEST_GOOGLE_SUB
        assert user.email == TEST_EMAIL
        assert user.name == "Alice Example"
        assert user.picture_url == "https://example.com/alice.png"
        assert user.auth_provider == "google"

    @pytest.mark.asyncio
    async def test_same_identity_returns_same_user(self, db_session: AsyncSession):
        service = UserService(db_session)

        first = await service.find_or_create_by_google_identity(make_identity())
        second = await service.find_or_create_by_google_identity(make_identity())

        assert first.id == second.id
        assert await count_users(db_session) == 1

    @pytest.mark.asyncio
    async def test_profile_changes_are_applied(self, db_session: AsyncSession):
        service = UserService(db_session)
        created = await service.find_or_create_by_google_identity(make_identity())

        updated = await service.find_or_create_by_google_identity(
            make_identity(
                email="alice.new@example.com",
                name="Alice Renamed",
                picture="https://example.com/new.png",
            )
        )

        assert updated.id == created.id
        assert updated.email == "alice.new@example.com"
        assert updated.name == "Alice Renamed"
        assert updated.picture_url == "https://example.com/new.png"

    @pytest.mark.asyncio
    async def test_empty_profile_fields_keep_stored_values(self, db_session: AsyncSession):
        service = UserService(db_session)
        await service.find_or_create_by_google_identity(make_identity())

        user = await service.find_or_create_by_google_identity(make_identity(name="", picture=None))

        assert user.name == "Alice Example"
        assert user.picture_url == "https://example.com/alice.png"

    @pytest.mark.asyncio
    async def test_links_existing_email_account(self, db_session: AsyncSession):
        service = UserService(db_session)
        dev_user = await service.find_or_create_by_email(TEST_EMAIL, "Dev User")
        assert dev_user.google_id is None

        user = await service.find_or_create_by_google_identity(make_identity())

        assert user.id == dev_user.id
        assert user.google_id == TEST_GOOGLE_SUB
        assert user.auth_provider == "google"
        assert await count_users(db_session) == 1

    @pytest.mark.asyncio
    async def test_email_taken_by_another_account(self, db_session: AsyncSession):
        service = UserService(db_session)
        await service.find_or_create_by_google_identity(make_identity())
        await service.find_or_create_by_email("bob@example.com", "Bob")

        with pytest.raises(UserEmailConflictError):
            await service.find_or_create_by_google_identity(make_identity(email="bob@example.com"))

    @pytest.mark.asyncio
    async def test_lost_insert_race_returns_winner(
        self,
        db_session: AsyncSession,
        session_maker: async_sessionmaker[AsyncSession],
    ):
        winner = User(
            google_id=TEST_GOOGLE_SUB,
            email=TEST_EMAIL,
            name="Alice Example",
            auth_provider="google",
        )
        db_session.add(winner)
        await db_session.commit()
        winner_id = winner.id

        async with session_maker() as session:
            service = UserService(session)
            # Both lookups miss as if the winner committed right after them
            service.get_by_google_id = miss_once(service.get_by_google_id)
            service.get_by_email = miss_once(service.get_by_email)

            user = await service.find_or_create_by_google_identity(make_identity())

            assert user.id == winner_id

        assert await count_users(db_session) == 1


class TestEmailLogin:
    """Tests for email-keyed accounts used by dev login."""

    @pytest.mark.asyncio
    async def test_creates_and_reuses(self, db_session: AsyncSession):
        service = UserService(db_session)

        first = await service.find_or_create_by_email("dev@example.com", "Dev User")
        second = await service.find_or_create_by_email("dev@example.com", "Someone Else")

        assert first.id == second.id
        assert second.name == "Dev User"
        assert second.auth_provider == "dev"

    @pytest.mark.asyncio
    async def test_lookup_helpers(self, db_session: AsyncSession, test_user: User):
        service = UserService(db_session)

        assert (await service.get_by_id(test_user.id)).email == test_user.email
        assert (await service.get_by_email(test_user.email)).id == test_user.id
        assert (await service.get_by_google_id(test_user.google_id)).id == test_user.id
        assert await service.get_by_email("nobody@example.com") is None
