"""Task poller: advances pending generation tasks toward a terminal state.

Each run takes a batch of pending tasks (oldest first), asks the engine for
their status and ingests the answers, then runs the completion aggregator.
A run is bounded by POLL_TIME_BUDGET_SECONDS; tasks not reached are left
pending for the next run.

Ingestion order for a completed task is fixed: re-host (best effort), write
the photo and commit, then mark the task completed. A crash in between
leaves a pending task whose photo already exists, and the next run finds
that photo instead of writing a second one.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import structlog

from avatarium.core.config import Settings
from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import GenerationJob
from avatarium.models.generation_task import GenerationTask, TaskStatus
from avatarium.services.aggregator import AggregationSummary, aggregate_processing_jobs
from avatarium.services.collaborators import Collaborators
from avatarium.services.image_generation.replicate_client import EngineTaskState
from avatarium.services.storage.r2_client import generate_prompt_key

logger = structlog.get_logger(__name__)


@dataclass
class PollSummary:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    pending: int = 0
    errors: int = 0
    deferred: int = 0
    budget_exhausted: bool = False
    aggregation: Optional[AggregationSummary] = None


async def _rehost(
    collaborators: Collaborators,
    settings: Settings,
    job: GenerationJob,
    task: GenerationTask,
    source_url: str,
) -> str:
    if collaborators.storage is None:
        return source_url

    key = generate_prompt_key(
        job.avatar_id, job.style_id, task.prompt_index, settings.generation_output_format
    )
    try:
        return await collaborators.storage.upload_from_url(source_url, key)
    except Exception as e:
        logger.warning(
            "task.rehost_failed",
            task_id=str(task.id),
            error_type=type(e).__name__,
            error_message=str(e),
            fallback="engine_url",
        )
        return source_url


async def _complete_task(
    uow_factory: Callable,
    collaborators: Collaborators,
    settings: Settings,
    job: GenerationJob,
    task: GenerationTask,
    result_url: str,
) -> bool:
    """Persist the photo, then mark the task completed.

    Returns:
        True if this call moved the task to completed
    """
    async with await uow_factory() as uow:
        existing = await uow.photos.get_existing(job.avatar_id, job.style_id, task.prompt)

    if existing:
        final_url = existing.image_url
    else:
        final_url = await _rehost(collaborators, settings, job, task, result_url)
        async with await uow_factory() as uow:
            await uow.photos.add_if_absent(job.avatar_id, job.style_id, task.prompt, final_url)

    async with await uow_factory() as uow:
        won = await uow.tasks.mark_completed(task.id, final_url)
        if won:
            counts = (await uow.tasks.count_by_status([job.id])).get(job.id, {})
            await uow.jobs.update_progress(job.id, counts.get(TaskStatus.COMPLETED, 0))

    return won


async def process_task(
    uow_factory: Callable,
    collaborators: Collaborators,
    settings: Settings,
    job: GenerationJob,
    task: GenerationTask,
) -> str:
    """Check one task with the engine and ingest the answer.

    Returns:
        One of completed, failed, timed_out, pending, error
    """
    age = task.age_seconds(utcnow())
    expired = age > settings.task_max_wait_seconds

    if task.external_task_id is None:
        # Reserved but the submission has not recorded its handle yet
        if not expired:
            return "pending"
        async with await uow_factory() as uow:
            await uow.tasks.mark_failed(task.id, "Timed out before the engine accepted the task")
        logger.warning("task.timed_out", task_id=str(task.id), job_id=str(job.id), submitted=False)
        return "timed_out"

    try:
        status = await collaborators.engine.check_status(task.external_task_id)
    except Exception as e:
        logger.warning(
            "task.poll_error",
            task_id=str(task.id),
            external_task_id=task.external_task_id,
            error_type=type(e).__name__,
            error_message=str(e),
        )
        if not expired:
            return "error"
        async with await uow_factory() as uow:
            await uow.tasks.mark_failed(
                task.id,
                f"Timed out after {settings.task_max_wait_seconds}s waiting for the engine "
                f"(last poll error: {e})",
            )
        logger.warning(
            "task.timed_out",
            task_id=str(task.id),
            job_id=str(job.id),
            age_seconds=round(age),
            poll_error=True,
        )
        return "timed_out"

    if status.state == EngineTaskState.COMPLETED and status.result_url:
        await _complete_task(uow_factory, collaborators, settings, job, task, status.result_url)
        logger.info(
            "task.completed",
            task_id=str(task.id),
            job_id=str(job.id),
            prompt_index=task.prompt_index,
        )
        return "completed"

    if status.state == EngineTaskState.FAILED:
        async with await uow_factory() as uow:
            await uow.tasks.mark_failed(task.id, status.error or "Generation failed")
        logger.warning(
            "task.failed",
            task_id=str(task.id),
            job_id=str(job.id),
            prompt_index=task.prompt_index,
            error_message=status.error,
        )
        return "failed"

    async with await uow_factory() as uow:
        await uow.tasks.increment_attempts(task.id)
        if expired:
            await uow.tasks.mark_failed(
                task.id, f"Timed out after {settings.task_max_wait_seconds}s waiting for the engine"
            )

    if expired:
        logger.warning(
            "task.timed_out",
            task_id=str(task.id),
            job_id=str(job.id),
            age_seconds=round(age),
            attempts=task.attempts + 1,
        )
        return "timed_out"
    return "pending"


async def poll_once(
    uow_factory: Callable,
    settings: Settings,
    collaborators: Collaborators,
    clock: Callable[[], float] = time.monotonic,
) -> PollSummary:
    """Run one poller pass and then the completion aggregator.

    Args:
        uow_factory: UnitOfWork factory
        settings: Batch size, time budget, max wait
        collaborators: Engine, storage, refund and delivery clients
        clock: Monotonic clock used for the time budget

    Returns:
        PollSummary with per-outcome counters
    """
    started = clock()
    summary = PollSummary()

    async with await uow_factory() as uow:
        tasks = await uow.tasks.get_pending_batch(limit=settings.poll_batch_size)
        jobs: dict[UUID, GenerationJob] = {}
        for task in tasks:
            if task.job_id not in jobs:
                job = await uow.jobs.get_by_id(task.job_id)
                if job:
                    jobs[task.job_id] = job

    for position, task in enumerate(tasks):
        if clock() - started > settings.poll_time_budget_seconds:
            summary.budget_exhausted = True
            summary.deferred = len(tasks) - position
            logger.warning(
                "poller.budget_exhausted",
                processed=position,
                deferred=summary.deferred,
                budget_seconds=settings.poll_time_budget_seconds,
            )
            break

        job = jobs.get(task.job_id)
        if job is None:
            continue

        summary.checked += 1
        outcome = await process_task(uow_factory, collaborators, settings, job, task)
        if outcome == "completed":
            summary.completed += 1
        elif outcome == "failed":
            summary.failed += 1
        elif outcome == "timed_out":
            summary.timed_out += 1
        elif outcome == "error":
            summary.errors += 1
        else:
            summary.pending += 1

    summary.aggregation = await aggregate_processing_jobs(
        uow_factory, collaborators, settings, job_ids=list(jobs)
    )

    logger.info(
        "poller.finished",
        checked=summary.checked,
        completed=summary.completed,
        failed=summary.failed,
        timed_out=summary.timed_out,
        pending=summary.pending,
        errors=summary.errors,
        deferred=summary.deferred,
        duration_seconds=round(clock() - started, 2),
    )
    return summary


async def run_task_poller(
    uow_factory: Callable,
    settings: Settings,
    collaborators: Collaborators,
) -> None:
    """Main loop for the embedded task poller.

    Polls at POLL_INTERVAL_SECONDS and handles graceful shutdown.

    Args:
        uow_factory: UnitOfWork factory
        settings: Application settings (poll interval, batch size, budget)
        collaborators: External clients
    """
    logger.info(
        "poller.started",
        poll_interval=settings.poll_interval_seconds,
        batch_size=settings.poll_batch_size,
    )

    try:
        while True:
            try:
                await poll_once(uow_factory, settings, collaborators)
                await asyncio.sleep(settings.poll_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "poller.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                # Back off 5 seconds before retrying
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("poller.stopped")
        raise
