"""Recipient address lookup"""

from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailhub.models import User
from mailhub.schemas.email import UserContactInfo

class UserDirectory(Protocol):
    async def get_user_contact_info(self, user_id: str) -> Optional[UserContactInfo]:
        ...

class SQLUserDirectory:
    """Resolve recipients from the users table"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user_contact_info(self, user_id: str) -> Optional[UserContactInfo]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.email, User.name).where(User.id == user_id)
            )
            row = result.one_or_none()

        if row is None:
            return None
        return UserContactInfo(email=row.email, name=row.name)
