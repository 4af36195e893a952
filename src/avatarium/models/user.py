"""User entity - account that owns avatars and payments."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class User(SQLModel, table=True):
    """User identified by device and, once linked, by Telegram account."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    device_id: Optional[str] = Field(default=None, max_length=255, index=True)
    telegram_user_id: Optional[int] = Field(
        default=None, sa_column=Column(BigInteger, unique=True, nullable=True)
    )
    created_at: datetime = Field(default_factory=utcnow)
