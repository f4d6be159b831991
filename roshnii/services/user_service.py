import logging
from collections.abc import Awaitable, Callable
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from roshnii.models.user import User
from roshnii.schemas.auth import GoogleIdentity

logger = logging.getLogger(__name__)


class UserEmailConflictError(Exception):
    pass


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_google_id(self, google_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.google_id == google_id))
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def find_or_create_by_google_identity(self, identity: GoogleIdentity) -> User:
        """
        Resolve a Google identity to a local user, creating one on first login.

        Lookup is by Google subject first. An account that already owns the
        email (created through dev login) gets the subject attached instead of
        a duplicate row. Safe to call concurrently for the same identity: the
        loser of an insert race re-reads the winner's row.
        """
        user = await self.get_by_google_id(identity.sub)

        if user is None:
            user = await self.get_by_email(identity.email)
            if user is not None:
                logger.info("Linking Google subject %s to existing user %s", identity.sub, user.id)
                user.google_id = identity.sub
                user.auth_provider = "google"

        if user is not None:
            if user.email != identity.email:
                existing = await self.get_by_email(identity.email)
                if existing is not None and existing.id != user.id:
                    raise UserEmailConflictError(
                        f"Cannot update email to {identity.email}: already in use by another account."
                    )
                user.email = identity.email
            if identity.name:
                user.name = identity.name
            if identity.picture:
                user.picture_url = identity.picture
            await self.db.flush()
            await self.db.refresh(user)
            return user

        user = User(
            google_id=identity.sub,
            email=identity.email,
            name=identity.name,
            picture_url=identity.picture,
            auth_provider="google",
        )
        created = await self._insert(user, lambda: self._find_google_winner(identity))
        logger.info("Created user %s for Google subject %s", created.id, identity.sub)
        return created

    async def find_or_create_by_email(
        self, email: str, name: str, provider: str = "dev"
    ) -> User:
        user = await self.get_by_email(email)
        if user is not None:
            return user

        user = User(email=email, name=name, auth_provider=provider)
        return await self._insert(user, lambda: self.get_by_email(email))

    async def _find_google_winner(self, identity: GoogleIdentity) -> Optional[User]:
        user = await self.get_by_google_id(identity.sub)
        if user is None:
            user = await self.get_by_email(identity.email)
        return user

    async def _insert(
        self, user: User, reload: Callable[[], Awaitable[Optional[User]]]
    ) -> User:
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            # A concurrent request created the same user first
            await self.db.rollback()
            existing = await reload()
            if existing is None:
                raise
            logger.info("Insert race lost, using existing user %s", existing.id)
            return existing

        await self.db.refresh(user)
        return user
