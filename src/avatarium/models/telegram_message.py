"""TelegramMessage entity - audit record of one delivery attempt."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class MessageKind(str, Enum):
    PHOTO = "photo"
    MEDIA_GROUP = "media_group"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class TelegramMessage(SQLModel, table=True):
    """One photo sent (or attempted) to a user's chat.

    Written at send time with the outcome; failed rows are not re-driven
    automatically.
    """

    __tablename__ = "telegram_messages"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: Optional[UUID] = Field(default=None, foreign_key="generation_jobs.id", index=True)
    chat_id: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    message_kind: MessageKind
    photo_url: str
    caption: Optional[str] = Field(default=None)
    status: DeliveryStatus
    attempts: int = Field(default=1, ge=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = Field(default=None)
