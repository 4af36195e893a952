"""Completion aggregator: derives a job's terminal status from its tasks.

A processing job is closed out only when its full task population exists
and none of it is pending. The terminal write is a conditional update on
status='processing', and only the caller that wins it runs the follow-up
(notification on success, refund on failure), so re-evaluating the same job
never repeats those side effects.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional
from uuid import UUID

import structlog

from avatarium.core.config import Settings
from avatarium.models.avatar import AvatarStatus
from avatarium.models.generation_job import JobStatus
from avatarium.models.generation_task import TaskStatus
from avatarium.services.collaborators import Collaborators
from avatarium.services.compensation import refund_job
from avatarium.services.notifications import deliver_job_photos

logger = structlog.get_logger(__name__)


@dataclass
class AggregationSummary:
    evaluated: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


def failure_message(failed: int, total: int) -> str:
    return f"{failed}/{total} photos failed to generate"


async def _close_out(uow_factory: Callable, job_id: UUID) -> Optional[JobStatus]:
    """Evaluate one job and finalize it if all of its tasks are terminal.

    Returns:
        The terminal status this caller wrote, or None if the job is not
        ready or another caller finalized it first
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)
        if not job or job.status != JobStatus.PROCESSING:
            return None

        counts = (await uow.tasks.count_by_status([job_id])).get(job_id, {})
        created = sum(counts.values())
        pending = counts.get(TaskStatus.PENDING, 0)
        completed = counts.get(TaskStatus.COMPLETED, 0)
        failed = counts.get(TaskStatus.FAILED, 0)

        if created < job.total_photos:
            logger.debug(
                "job.still_dispatching",
                job_id=str(job_id),
                created=created,
                total=job.total_photos,
            )
            return None
        if pending > 0:
            return None

        if failed == 0:
            won = await uow.jobs.finalize(job_id, JobStatus.COMPLETED, completed)
            if won:
                photos = await uow.photos.list_for_avatar_style(job.avatar_id, job.style_id)
                thumbnail = photos[0].image_url if photos else None
                await uow.avatars.set_status(
                    job.avatar_id, AvatarStatus.READY, thumbnail_url=thumbnail
                )
            status = JobStatus.COMPLETED
        else:
            message = failure_message(failed, job.total_photos)
            won = await uow.jobs.finalize(job_id, JobStatus.FAILED, completed, message)
            if won:
                await uow.avatars.set_status(job.avatar_id, AvatarStatus.DRAFT)
            status = JobStatus.FAILED

    if not won:
        logger.info("job.finalize_lost", job_id=str(job_id))
        return None

    logger.info(
        f"job.{status.value}",
        job_id=str(job_id),
        completed=completed,
        failed=failed,
        total=job.total_photos,
    )
    return status


async def evaluate_job(
    uow_factory: Callable,
    collaborators: Collaborators,
    settings: Settings,
    job_id: UUID,
) -> Optional[JobStatus]:
    """Close out a job if it is resolved and run the matching follow-up.

    Returns:
        COMPLETED or FAILED when this call finalized the job, otherwise None
    """
    status = await _close_out(uow_factory, job_id)

    if status == JobStatus.COMPLETED:
        try:
            await deliver_job_photos(uow_factory, collaborators.messenger, settings, job_id)
        except Exception as e:
            logger.error(
                "notification.error",
                job_id=str(job_id),
                error_type=type(e).__name__,
                error_message=str(e),
            )

    elif status == JobStatus.FAILED:
        outcome = await refund_job(uow_factory, collaborators.payments, job_id, "Generation failed")
        logger.info(
            "job.compensated", job_id=str(job_id), refunded=outcome.refunded, reason=outcome.reason
        )

    return status


async def aggregate_processing_jobs(
    uow_factory: Callable,
    collaborators: Collaborators,
    settings: Settings,
    job_ids: Optional[Iterable[UUID]] = None,
    page_size: int = 100,
) -> AggregationSummary:
    """Evaluate every processing job.

    Jobs named in job_ids (those whose tasks were just polled) go first;
    the rest are walked oldest first in pages of page_size, so a backlog of
    unresolved jobs never hides a resolved one. A failure evaluating one
    job is logged and does not stop the others.
    """
    summary = AggregationSummary()
    seen: set[UUID] = set()

    async def _evaluate(job_id: UUID) -> None:
        seen.add(job_id)
        summary.evaluated += 1
        try:
            status = await evaluate_job(uow_factory, collaborators, settings, job_id)
        except Exception as e:
            logger.error(
                "aggregator.error",
                job_id=str(job_id),
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            summary.skipped += 1
            return

        if status == JobStatus.COMPLETED:
            summary.completed += 1
        elif status == JobStatus.FAILED:
            summary.failed += 1
        else:
            summary.skipped += 1

    for job_id in job_ids or []:
        if job_id not in seen:
            await _evaluate(job_id)

    after: Optional[tuple[datetime, UUID]] = None
    while True:
        async with await uow_factory() as uow:
            page = await uow.jobs.list_by_status(
                JobStatus.PROCESSING, limit=page_size, after=after
            )
        for job in page:
            if job.id not in seen:
                await _evaluate(job.id)
        if len(page) < page_size:
            break
        after = (page[-1].created_at, page[-1].id)

    return summary


async def fail_and_compensate(
    uow_factory: Callable,
    collaborators: Collaborators,
    job_id: UUID,
    error_message: str,
) -> bool:
    """Fail a pending or processing job directly and refund it.

    Used for unrecoverable dispatch errors and the stuck-job sweep.

    Returns:
        True if this call failed the job
    """
    async with await uow_factory() as uow:
        won = await uow.jobs.fail_if_active(job_id, error_message)
        if won:
            job = await uow.jobs.get_by_id(job_id)
            if job:
                await uow.avatars.set_status(job.avatar_id, AvatarStatus.DRAFT)

    if not won:
        return False

    logger.warning("job.failed", job_id=str(job_id), error_message=error_message)
    outcome = await refund_job(uow_factory, collaborators.payments, job_id, error_message)
    logger.info(
        "job.compensated", job_id=str(job_id), refunded=outcome.refunded, reason=outcome.reason
    )
    return True
