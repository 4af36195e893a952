"""User repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.models.avatar import Avatar
from avatarium.models.user import User


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User).where(User.id == user_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_chat_id_for_avatar(self, avatar_id: UUID) -> int | None:
        """Resolve the Telegram chat of an avatar's owner.

        Private chats share their id with the Telegram user id.

        Returns:
            Chat id, or None if the owner has not linked Telegram
        """
        result = await self.session.execute(
            select(User.telegram_user_id)
            .join(Avatar, Avatar.user_id == User.id)  # type: ignore[arg-type]
            .where(Avatar.id == avatar_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
