from __future__ import annotations

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.logger import get_logger
from quizroster.models.user import User
from quizroster.utils import normalize_email

_logger = get_logger("services.users")


class IdentityProvider(Protocol):
    async def find_user_id(self, session: AsyncSession, email: str) -> Optional[str]: ...


class UserDirectory:
    """Identity lookup backed by the ``users`` table."""

    async def find_user_id(self, session: AsyncSession, email: str) -> Optional[str]:
        result = await session.execute(
            select(User.id).where(User.email == normalize_email(email))
        )
        user_id = result.scalar_one_or_none()
        _logger.debug("identity.lookup", "Looked up account by email", found=user_id is not None)
        return user_id


async def get_user(session: AsyncSession, user_id: str) -> Optional[User]:
    return await session.get(User, user_id)
