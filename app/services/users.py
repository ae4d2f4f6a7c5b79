"""Persistence of signed-in users."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import User
from ..utils import new_id

logger = logging.getLogger(__name__)


class UserStore:
    """Creates users on first sign-in and refreshes their profile afterwards."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def upsert_from_provider(
        self,
        provider: str,
        account_id: str,
        *,
        email: str | None,
        name: str | None,
        image: str | None,
        user_id: str | None = None,
    ) -> User:
        """Return the user linked to ``(provider, account_id)``, creating it if needed.

        ``user_id`` pins the identifier of a newly created user; providers whose
        subject is already an opaque stable id (Firebase uids) use it directly.
        """

        async with self._session_factory() as session:
            user = await session.scalar(
                select(User).where(
                    User.provider == provider,
                    User.provider_account_id == account_id,
                )
            )
            if user is None:
                user = User(
                    id=user_id or new_id(),
                    provider=provider,
                    provider_account_id=account_id,
                )
                session.add(user)
                logger.info("Creating %s user for %s", provider, email)
            user.email = email
            user.name = name
            user.image = image
            await session.commit()
            await session.refresh(user)
            return user
