"""GeneratedPhoto repository for the generation pipeline."""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.models.generated_photo import GeneratedPhoto


class GeneratedPhotoRepository:
    """Repository for GeneratedPhoto entities.

    Task completion handling may run more than once for the same engine
    result, so inserts go through add_if_absent.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_existing(
        self, avatar_id: UUID, style_id: str, prompt: str
    ) -> GeneratedPhoto | None:
        """Retrieve the photo already stored for (avatar, style, prompt), if any."""
        result = await self.session.execute(
            select(GeneratedPhoto)
            .where(GeneratedPhoto.avatar_id == avatar_id)  # type: ignore[arg-type]
            .where(GeneratedPhoto.style_id == style_id)  # type: ignore[arg-type]
            .where(GeneratedPhoto.prompt == prompt)  # type: ignore[arg-type]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_if_absent(
        self, avatar_id: UUID, style_id: str, prompt: str, image_url: str
    ) -> tuple[GeneratedPhoto, bool]:
        """Insert a photo unless one exists for the same (avatar, style, prompt).

        Args:
            avatar_id: Owning avatar
            style_id: Style identifier
            prompt: Prompt the image was generated from
            image_url: Final image location

        Returns:
            Tuple of (photo, created) where created is False for a duplicate
        """
        existing = await self.get_existing(avatar_id, style_id, prompt)
        if existing:
            return existing, False

        photo = GeneratedPhoto(
            avatar_id=avatar_id, style_id=style_id, prompt=prompt, image_url=image_url
        )
        self.session.add(photo)
        await self.session.flush()
        return photo, True

    async def list_for_avatar_style(self, avatar_id: UUID, style_id: str) -> list[GeneratedPhoto]:
        """Retrieve an avatar's photos in a style, oldest first."""
        result = await self.session.execute(
            select(GeneratedPhoto)
            .where(GeneratedPhoto.avatar_id == avatar_id)  # type: ignore[arg-type]
            .where(GeneratedPhoto.style_id == style_id)  # type: ignore[arg-type]
            .order_by(GeneratedPhoto.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def count_for_avatar_style(self, avatar_id: UUID, style_id: str) -> int:
        result = await self.session.execute(
            select(func.count(GeneratedPhoto.id))  # type: ignore[arg-type]
            .where(GeneratedPhoto.avatar_id == avatar_id)  # type: ignore[arg-type]
            .where(GeneratedPhoto.style_id == style_id)  # type: ignore[arg-type]
        )
        return result.scalar() or 0
