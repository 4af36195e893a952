"""Delivery of a completed job's photos to the owner's Telegram chat.

Photos go out in batches of at most TELEGRAM_MEDIA_GROUP_SIZE. Every photo
attempted gets a TelegramMessage row with the outcome. Failed sends are
recorded and logged, never retried automatically.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import structlog

from avatarium.core.config import Settings
from avatarium.core.timezone import utcnow
from avatarium.models.telegram_message import DeliveryStatus, MessageKind, TelegramMessage
from avatarium.services.exceptions import DeliveryError
from avatarium.services.image_generation.prompts import get_style
from avatarium.services.telegram.bot_client import TelegramBotClient

logger = structlog.get_logger(__name__)


@dataclass
class DeliveryReport:
    """Outcome of delivering one job's photos."""

    job_id: UUID
    chat_id: Optional[int] = None
    batches: int = 0
    sent: int = 0
    failed: int = 0
    skipped_reason: Optional[str] = None


def chunk(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def build_caption(style_name: str, photo_count: int) -> str:
    return f"Your {style_name} photoset is ready: {photo_count} photos"


async def deliver_job_photos(
    uow_factory: Callable,
    messenger: Optional[TelegramBotClient],
    settings: Settings,
    job_id: UUID,
) -> DeliveryReport:
    """Send all photos of a job's avatar and style to the owner's chat.

    Args:
        uow_factory: UnitOfWork factory
        messenger: Telegram client, None when delivery is not configured
        settings: Batch size and inter-batch delay
        job_id: Completed job

    Returns:
        DeliveryReport with per-photo counts
    """
    report = DeliveryReport(job_id=job_id)

    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if not job:
            report.skipped_reason = "job_not_found"
            return report
        chat_id = await uow.users.get_chat_id_for_avatar(job.avatar_id)
        photos = await uow.photos.list_for_avatar_style(job.avatar_id, job.style_id)
        style = get_style(job.style_id)

    if messenger is None:
        report.skipped_reason = "telegram_disabled"
    elif chat_id is None:
        report.skipped_reason = "chat_not_linked"
    elif not photos:
        report.skipped_reason = "no_photos"

    if report.skipped_reason:
        logger.info("notification.skipped", job_id=str(job_id), reason=report.skipped_reason)
        return report

    report.chat_id = chat_id
    caption = build_caption(style.name if style else job.style_id, len(photos))
    batch_size = max(1, settings.telegram_media_group_size)
    batches = chunk([photo.image_url for photo in photos], batch_size)

    for index, urls in enumerate(batches):
        batch_caption = caption if index == 0 else None
        kind = MessageKind.PHOTO if len(urls) == 1 else MessageKind.MEDIA_GROUP
        error: Optional[str] = None

        try:
            if kind == MessageKind.PHOTO:
                await messenger.send_photo(chat_id, urls[0], caption=batch_caption)
            else:
                await messenger.send_media_group(chat_id, urls, caption=batch_caption)
        except DeliveryError as e:
            error = str(e)

        now = utcnow()
        async with await uow_factory() as uow:
            for position, url in enumerate(urls):
                await uow.telegram_messages.add(
                    TelegramMessage(
                        job_id=job_id,
                        chat_id=chat_id,
                        message_kind=kind,
                        photo_url=url,
                        caption=batch_caption if position == 0 else None,
                        status=DeliveryStatus.FAILED if error else DeliveryStatus.SENT,
                        error_message=error[:1000] if error else None,
                        sent_at=None if error else now,
                    )
                )

        report.batches += 1
        if error:
            report.failed += len(urls)
            logger.error(
                "notification.batch_failed",
                job_id=str(job_id),
                batch=index,
                photos=len(urls),
                error_message=error,
            )
        else:
            report.sent += len(urls)
            logger.info(
                "notification.batch_sent", job_id=str(job_id), batch=index, photos=len(urls)
            )

        if index < len(batches) - 1 and settings.telegram_batch_delay_seconds > 0:
            await asyncio.sleep(settings.telegram_batch_delay_seconds)

    logger.info(
        "notification.delivered",
        job_id=str(job_id),
        sent=report.sent,
        failed=report.failed,
        batches=report.batches,
    )
    return report
