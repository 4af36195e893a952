"""Avatar entity - the user's profile that generation jobs produce photos for."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class AvatarStatus(str, Enum):
    """Avatar lifecycle status.

    draft: references uploaded, no generation running (also the state a
    failed generation reverts to so the user can retry)
    """

    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"


class Avatar(SQLModel, table=True):
    """Avatar (profile) owned by a user."""

    __tablename__ = "avatars"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    name: str = Field(default="My avatar", max_length=255)
    status: AvatarStatus = Field(default=AvatarStatus.DRAFT)
    thumbnail_url: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
