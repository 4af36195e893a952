"""Avatar repository."""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.core.timezone import utcnow
from avatarium.models.avatar import Avatar, AvatarStatus


class AvatarRepository:
    """Repository for Avatar entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, avatar: Avatar) -> Avatar:
        self.session.add(avatar)
        await self.session.flush()
        return avatar

    async def get_by_id(self, avatar_id: UUID) -> Avatar | None:
        result = await self.session.execute(
            select(Avatar).where(Avatar.id == avatar_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def set_status(
        self, avatar_id: UUID, status: AvatarStatus, thumbnail_url: str | None = None
    ) -> None:
        """Set avatar status, updating the thumbnail only when one is given.

        Args:
            avatar_id: Avatar's unique identifier
            status: New status
            thumbnail_url: Optional thumbnail (first generated photo)
        """
        values: dict = {"status": status, "updated_at": utcnow()}
        if thumbnail_url:
            values["thumbnail_url"] = thumbnail_url

        await self.session.execute(
            update(Avatar)
            .where(Avatar.id == avatar_id)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
