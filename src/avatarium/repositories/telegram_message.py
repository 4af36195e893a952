"""TelegramMessage repository (delivery audit trail)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.models.telegram_message import TelegramMessage


class TelegramMessageRepository:
    """Repository for TelegramMessage entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, message: TelegramMessage) -> TelegramMessage:
        self.session.add(message)
        await self.session.flush()
        return message

    async def list_by_job(self, job_id: UUID) -> list[TelegramMessage]:
        result = await self.session.execute(
            select(TelegramMessage)
            .where(TelegramMessage.job_id == job_id)  # type: ignore[arg-type]
            .order_by(TelegramMessage.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())
