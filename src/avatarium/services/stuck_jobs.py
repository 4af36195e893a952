"""Sweep for jobs that stopped making progress.

Catches what the aggregator cannot: a processing job whose task population
never reached its requested count (a dispatch chunk was lost), and a pending
job that was admitted but never claimed.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable
from uuid import UUID

import structlog

from avatarium.core.config import Settings
from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import JobStatus
from avatarium.services.aggregator import fail_and_compensate
from avatarium.services.collaborators import Collaborators

logger = structlog.get_logger(__name__)


@dataclass
class SweepSummary:
    checked: int = 0
    failed_job_ids: list[UUID] = field(default_factory=list)


async def find_stuck_jobs(uow_factory: Callable, settings: Settings) -> list[tuple[UUID, str]]:
    """Return (job_id, reason) for every job the sweep should fail."""
    now = utcnow()
    processing_cutoff = now - timedelta(minutes=settings.stuck_processing_minutes)
    pending_cutoff = now - timedelta(minutes=settings.stuck_pending_minutes)
    stuck: list[tuple[UUID, str]] = []

    async with await uow_factory() as uow:
        processing = await uow.jobs.list_stale(JobStatus.PROCESSING, processing_cutoff)
        counts = await uow.tasks.count_by_status([job.id for job in processing])

        for job in processing:
            created = sum(counts.get(job.id, {}).values())
            if created >= job.total_photos:
                # Every unit exists; the poller's timeout resolves the rest
                continue
            last_activity = await uow.tasks.last_activity(job.id)
            if last_activity is not None and last_activity >= processing_cutoff:
                continue
            stuck.append(
                (
                    job.id,
                    f"Generation stalled: {created}/{job.total_photos} photos were submitted",
                )
            )

        pending = await uow.jobs.list_stale(JobStatus.PENDING, pending_cutoff)
        for job in pending:
            stuck.append((job.id, "Generation never started"))

    return stuck


async def sweep_stuck_jobs(
    uow_factory: Callable, collaborators: Collaborators, settings: Settings
) -> SweepSummary:
    """Fail and compensate every stuck job.

    Returns:
        SweepSummary with the ids of jobs this run failed
    """
    summary = SweepSummary()
    stuck = await find_stuck_jobs(uow_factory, settings)
    summary.checked = len(stuck)

    for job_id, reason in stuck:
        if await fail_and_compensate(uow_factory, collaborators, job_id, reason):
            summary.failed_job_ids.append(job_id)
            logger.warning("job.stuck_failed", job_id=str(job_id), reason=reason)

    logger.info("sweep.finished", checked=summary.checked, failed=len(summary.failed_job_ids))
    return summary
