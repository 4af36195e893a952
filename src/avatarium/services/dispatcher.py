"""Job admission and dispatch of generation units.

Admission validates a request and persists the job in pending. Dispatch
then claims the job (pending -> processing, a single conditional update)
and submits its units, either inline with bounded concurrency or in chunks
delivered by the durable queue. Both paths reserve each unit by inserting
its task row before calling the engine, so a unit is submitted at most once
however many times a chunk is delivered.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError

from avatarium.core.config import Settings
from avatarium.models.avatar import AvatarStatus
from avatarium.models.generation_job import GenerationJob, JobStatus
from avatarium.models.generation_task import GenerationTask
from avatarium.models.payment import PaymentStatus
from avatarium.services.aggregator import fail_and_compensate
from avatarium.services.collaborators import Collaborators
from avatarium.services.exceptions import AdmissionError, EngineError, QueuePublishError
from avatarium.services.image_generation.prompts import filter_reference_images, get_style
from avatarium.services.image_generation.replicate_client import GenerationClient
from avatarium.services.queue.qstash_client import ChunkPayload

logger = structlog.get_logger(__name__)


@dataclass
class AdmissionRequest:
    avatar_id: UUID
    style_id: str
    reference_images: list[str]
    photo_count: Optional[int] = None
    payment_id: Optional[UUID] = None


@dataclass
class DispatchSummary:
    submitted: int = 0
    failed: int = 0
    skipped: int = 0
    indices: list[int] = field(default_factory=list)


def clamp_photo_count(requested: Optional[int], available: int, maximum: int) -> int:
    """Requested count bounded by the style's templates and the configured maximum."""
    wanted = requested if requested and requested > 0 else maximum
    return max(0, min(wanted, available, maximum))


async def admit_job(
    uow_factory: Callable, settings: Settings, request: AdmissionRequest
) -> GenerationJob:
    """Validate a generation request and persist its job in pending.

    Raises:
        AdmissionError: Unknown style, too few usable references, unknown
            avatar, or no succeeded payment free for a new job; nothing
            is written
    """
    style = get_style(request.style_id)
    if style is None:
        raise AdmissionError(AdmissionError.UNKNOWN_STYLE, f"Unknown style: {request.style_id}")

    references, rejected = filter_reference_images(
        request.reference_images, settings.max_reference_images
    )
    if rejected:
        logger.warning(
            "job.references_rejected",
            avatar_id=str(request.avatar_id),
            rejected=len(rejected),
        )
    if len(references) < settings.min_reference_images:
        raise AdmissionError(
            AdmissionError.INSUFFICIENT_REFERENCES,
            f"At least {settings.min_reference_images} valid reference image(s) required, "
            f"got {len(references)}",
        )

    total = clamp_photo_count(
        request.photo_count, len(style.prompt_indices), settings.max_photos_per_job
    )

    async with await uow_factory() as uow:
        avatar = await uow.avatars.get_by_id(request.avatar_id)
        if not avatar:
            raise AdmissionError(
                AdmissionError.PROFILE_NOT_FOUND, f"Avatar {request.avatar_id} not found"
            )

        if request.payment_id:
            payment = await uow.payments.get_by_id(request.payment_id)
            if (
                not payment
                or payment.user_id != avatar.user_id
                or payment.status != PaymentStatus.SUCCEEDED
            ):
                raise AdmissionError(
                    AdmissionError.PAYMENT_REQUIRED, "A succeeded payment is required"
                )
            candidates = [payment]
        else:
            candidates = await uow.payments.list_succeeded_for_user(avatar.user_id)
            if not candidates:
                raise AdmissionError(
                    AdmissionError.PAYMENT_REQUIRED, "A succeeded payment is required"
                )

        # The claim is a conditional UPDATE; a concurrent admission on the
        # same payment blocks on the row and then sees it taken
        job_id = uuid4()
        payment = None
        for candidate in candidates:
            if await uow.payments.claim_for_job(candidate.id, job_id):
                payment = candidate
                break

        if payment is None:
            raise AdmissionError(
                AdmissionError.PAYMENT_REQUIRED, "Payment already used by another generation"
            )

        job = await uow.jobs.add(
            GenerationJob(
                id=job_id,
                avatar_id=avatar.id,
                style_id=request.style_id,
                total_photos=total,
                payment_id=payment.id,
                reference_images=references,
            )
        )
        await uow.avatars.set_status(avatar.id, AvatarStatus.PROCESSING)

    logger.info(
        "job.admitted",
        job_id=str(job.id),
        avatar_id=str(job.avatar_id),
        style_id=job.style_id,
        total_photos=total,
        references=len(references),
    )
    return job


async def start_job(uow_factory: Callable, job_id: UUID) -> Optional[GenerationJob]:
    """Claim a pending job for processing.

    Returns:
        The job if this caller won the claim, None otherwise
    """
    async with await uow_factory() as uow:
        claimed = await uow.jobs.claim_for_processing(job_id)
        job = await uow.jobs.get_by_id(job_id) if claimed else None

    if not claimed:
        logger.info("job.claim_lost", job_id=str(job_id))
        return None

    logger.info("job.claimed", job_id=str(job_id))
    return job


async def submit_unit(
    uow_factory: Callable,
    engine: GenerationClient,
    job: GenerationJob,
    prompt_index: int,
    prompt: str,
) -> Optional[bool]:
    """Reserve and submit one unit of a job.

    Returns:
        True if submitted, False if submission failed (task marked failed),
        None if the unit was already reserved by an earlier delivery
    """
    try:
        async with await uow_factory() as uow:
            if await uow.tasks.get_by_job_and_index(job.id, prompt_index):
                return None
            task = await uow.tasks.add(
                GenerationTask(job_id=job.id, prompt_index=prompt_index, prompt=prompt)
            )
    except IntegrityError:
        logger.info("task.reservation_conflict", job_id=str(job.id), prompt_index=prompt_index)
        return None

    try:
        external_task_id = await engine.submit(prompt, job.reference_images)
    except Exception as e:
        # Any submission error settles the reserved unit as failed
        async with await uow_factory() as uow:
            await uow.tasks.mark_failed(task.id, f"Submission failed: {e}")
        logger.error(
            "task.submission_failed",
            job_id=str(job.id),
            prompt_index=prompt_index,
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=not isinstance(e, EngineError),
        )
        return False

    async with await uow_factory() as uow:
        await uow.tasks.set_external_id(task.id, external_task_id)

    logger.info(
        "task.submitted",
        job_id=str(job.id),
        prompt_index=prompt_index,
        external_task_id=external_task_id,
    )
    return True


async def dispatch_units(
    uow_factory: Callable,
    settings: Settings,
    engine: GenerationClient,
    job: GenerationJob,
    start_index: int,
    count: int,
) -> DispatchSummary:
    """Submit units [start_index, start_index + count) of a job.

    Runs at most DISPATCH_CONCURRENCY submissions at a time.

    Raises:
        ValueError: The job's style is no longer in the catalogue
        Exception: The first error that escaped a unit (e.g. a failed
            reservation), re-raised once every other unit has settled
    """
    style = get_style(job.style_id)
    if style is None:
        raise ValueError(f"Unknown style: {job.style_id}")

    end = min(start_index + count, job.total_photos)
    indices = list(range(start_index, end))
    semaphore = asyncio.Semaphore(max(1, settings.dispatch_concurrency))

    async def _bounded(index: int) -> Optional[bool]:
        async with semaphore:
            return await submit_unit(uow_factory, engine, job, index, style.build_prompt(index))

    # Every unit settles before an escaped error is raised
    results = await asyncio.gather(*[_bounded(i) for i in indices], return_exceptions=True)

    summary = DispatchSummary(indices=indices)
    errors: list[BaseException] = []
    for index, result in zip(indices, results):
        if isinstance(result, BaseException):
            errors.append(result)
            summary.failed += 1
            logger.error(
                "task.dispatch_error",
                job_id=str(job.id),
                prompt_index=index,
                error_type=type(result).__name__,
                error_message=str(result),
            )
        elif result is True:
            summary.submitted += 1
        elif result is False:
            summary.failed += 1
        else:
            summary.skipped += 1

    logger.info(
        "job.units_dispatched",
        job_id=str(job.id),
        start_index=start_index,
        end_index=end,
        submitted=summary.submitted,
        failed=summary.failed,
        skipped=summary.skipped,
    )
    if errors:
        raise errors[0]
    return summary


async def run_job_inline(
    uow_factory: Callable,
    settings: Settings,
    collaborators: Collaborators,
    job_id: UUID,
) -> Optional[DispatchSummary]:
    """Claim a job and submit all of its units in this process.

    An unexpected error fails the job and compensates it.

    Returns:
        DispatchSummary, or None if another trigger owns the job
    """
    job = await start_job(uow_factory, job_id)
    if job is None:
        return None

    try:
        return await dispatch_units(
            uow_factory, settings, collaborators.engine, job, 0, job.total_photos
        )
    except Exception as e:
        logger.error(
            "job.dispatch_error",
            job_id=str(job_id),
            error_type=type(e).__name__,
            error_message=str(e),
            exc_info=True,
        )
        await fail_and_compensate(uow_factory, collaborators, job_id, f"Dispatch failed: {e}")
        return None


async def publish_first_chunk(
    collaborators: Collaborators, settings: Settings, job_id: UUID
) -> bool:
    """Queue chunk 0 of a job.

    Returns:
        True if queued, False if there is no queue or publishing failed
    """
    if collaborators.queue is None:
        return False
    try:
        await collaborators.queue.publish_chunk(
            ChunkPayload(job_id=job_id, start_index=0, chunk_size=settings.dispatch_chunk_size)
        )
    except QueuePublishError as e:
        logger.error(
            "queue.publish_failed", job_id=str(job_id), start_index=0, error_message=str(e)
        )
        return False
    return True


async def process_chunk(
    uow_factory: Callable,
    settings: Settings,
    collaborators: Collaborators,
    payload: ChunkPayload,
) -> Optional[DispatchSummary]:
    """Handle one queued dispatch chunk.

    Chunk 0 claims the job; later chunks require it to be processing. After
    submitting its range a chunk queues the next one, or submits the rest
    inline if the queue is unavailable.

    Returns:
        DispatchSummary, or None if the chunk was not for a job this call owns
    """
    if payload.start_index == 0:
        job = await start_job(uow_factory, payload.job_id)
    else:
        async with await uow_factory() as uow:
            job = await uow.jobs.get_by_id(payload.job_id)
        if job is not None and job.status != JobStatus.PROCESSING:
            logger.info(
                "chunk.skipped",
                job_id=str(payload.job_id),
                start_index=payload.start_index,
                status=job.status.value,
            )
            job = None

    if job is None:
        return None

    try:
        summary = await dispatch_units(
            uow_factory,
            settings,
            collaborators.engine,
            job,
            payload.start_index,
            payload.chunk_size,
        )
    except ValueError as e:
        await fail_and_compensate(uow_factory, collaborators, job.id, f"Dispatch failed: {e}")
        return None

    next_index = payload.start_index + payload.chunk_size
    if next_index >= job.total_photos:
        return summary

    next_chunk = ChunkPayload(
        job_id=job.id, start_index=next_index, chunk_size=payload.chunk_size
    )
    try:
        if collaborators.queue is None:
            raise QueuePublishError("queue not configured")
        await collaborators.queue.publish_chunk(next_chunk)
    except QueuePublishError as e:
        logger.warning(
            "queue.publish_failed",
            job_id=str(job.id),
            start_index=next_index,
            error_message=str(e),
            fallback="inline",
        )
        rest = await dispatch_units(
            uow_factory,
            settings,
            collaborators.engine,
            job,
            next_index,
            job.total_photos - next_index,
        )
        summary.submitted += rest.submitted
        summary.failed += rest.failed
        summary.skipped += rest.skipped
        summary.indices.extend(rest.indices)

    return summary


async def retry_job(uow_factory: Callable, job_id: UUID) -> Optional[GenerationJob]:
    """Reset a terminal job to pending for re-dispatch.

    Failed tasks are deleted so their prompt indices are dispatched again;
    completed tasks and their photos are kept.

    Returns:
        The reset job, or None if the job does not exist or is not terminal
    """
    async with await uow_factory() as uow:
        if not await uow.jobs.reset_for_retry(job_id):
            return None
        removed = await uow.tasks.delete_failed(job_id)
        job = await uow.jobs.get_by_id(job_id)
        if job:
            await uow.avatars.set_status(job.avatar_id, AvatarStatus.PROCESSING)

    logger.info("job.retry_reset", job_id=str(job_id), failed_tasks_removed=removed)
    return job
