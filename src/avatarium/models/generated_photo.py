"""GeneratedPhoto entity - a delivered result image."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class GeneratedPhoto(SQLModel, table=True):
    """Photo produced for an avatar in a style.

    At most one row per (avatar_id, style_id, prompt); inserts go through
    GeneratedPhotoRepository.add_if_absent.
    """

    __tablename__ = "generated_photos"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    avatar_id: UUID = Field(foreign_key="avatars.id", index=True)
    style_id: str = Field(max_length=100)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    image_url: str
    created_at: datetime = Field(default_factory=utcnow)
