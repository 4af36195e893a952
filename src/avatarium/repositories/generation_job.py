"""GenerationJob repository for the generation pipeline.

Every persisted job transition is a single conditional UPDATE that names the
status it expects to find. Callers learn from the return value whether their
transition won; a False return means another trigger already moved the job.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import TERMINAL_JOB_STATUSES, GenerationJob, JobStatus


class GenerationJobRepository:
    """Repository for GenerationJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new generation job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve generation job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_latest_by_avatar(self, avatar_id: UUID) -> GenerationJob | None:
        """Retrieve the most recent generation job for an avatar."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.avatar_id == avatar_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def claim_for_processing(self, job_id: UUID) -> bool:
        """Atomically move a job from pending to processing.

        Query:
            UPDATE generation_jobs
            SET status = 'processing', updated_at = now()
            WHERE id = :job_id AND status = 'pending'

        Exactly one concurrent caller sees a row affected; every other caller
        gets False and must exit without side effects.

        Args:
            job_id: Job's unique identifier

        Returns:
            True if this caller performed the transition
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status == JobStatus.PENDING)  # type: ignore[arg-type]
            .values(status=JobStatus.PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def finalize(
        self,
        job_id: UUID,
        status: JobStatus,
        completed_photos: int,
        error_message: str | None = None,
    ) -> bool:
        """Atomically move a processing job to a terminal status.

        Only a job still in processing is updated, so a job is finalized once
        no matter how many poll cycles evaluate it.

        Args:
            job_id: Job's unique identifier
            status: COMPLETED or FAILED
            completed_photos: Number of completed tasks
            error_message: Aggregate failure message (FAILED only)

        Returns:
            True if this caller performed the transition
        """
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError(f"finalize expects a terminal status, got {status.value}")

        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status == JobStatus.PROCESSING)  # type: ignore[arg-type]
            .values(
                status=status,
                completed_photos=completed_photos,
                error_message=error_message[:1000] if error_message else None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def fail_if_active(self, job_id: UUID, error_message: str) -> bool:
        """Atomically fail a job that is still pending or processing.

        Used for unrecoverable dispatcher errors and the stuck-job sweep.

        Returns:
            True if this caller performed the transition
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status.in_([JobStatus.PENDING, JobStatus.PROCESSING]))  # type: ignore[attr-defined]
            .values(
                status=JobStatus.FAILED, error_message=error_message[:1000], updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def reset_for_retry(self, job_id: UUID) -> bool:
        """Atomically reset a terminal job to pending for an admin retry.

        Returns:
            True if the job was terminal and is now pending
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status.in_(TERMINAL_JOB_STATUSES))  # type: ignore[attr-defined]
            .values(
                status=JobStatus.PENDING,
                completed_photos=0,
                error_message=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def update_progress(self, job_id: UUID, completed_photos: int) -> None:
        """Record the running completed count of a processing job."""
        await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .where(GenerationJob.status == JobStatus.PROCESSING)  # type: ignore[arg-type]
            .where(GenerationJob.total_photos >= completed_photos)  # type: ignore[arg-type]
            .values(completed_photos=completed_photos, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def list_by_status(
        self,
        status: JobStatus,
        limit: int = 100,
        after: Optional[tuple[datetime, UUID]] = None,
    ) -> list[GenerationJob]:
        """Retrieve jobs in a status, oldest first.

        Args:
            status: Status to match
            limit: Page size
            after: (created_at, id) of the last job of the previous page;
                the page starts strictly after it

        Returns:
            Jobs ordered by (created_at, id)
        """
        query = select(GenerationJob).where(
            GenerationJob.status == status  # type: ignore[arg-type]
        )
        if after is not None:
            created_at, job_id = after
            query = query.where(
                or_(
                    GenerationJob.created_at > created_at,  # type: ignore[arg-type]
                    and_(
                        GenerationJob.created_at == created_at,  # type: ignore[arg-type]
                        GenerationJob.id > job_id,  # type: ignore[arg-type]
                    ),
                )
            )
        result = await self.session.execute(
            query.order_by(
                GenerationJob.created_at.asc(),  # type: ignore[attr-defined]
                GenerationJob.id.asc(),  # type: ignore[attr-defined]
            ).limit(limit)
        )
        return list(result.scalars().all())

    async def list_stale(
        self, status: JobStatus, updated_before: datetime, limit: int = 50
    ) -> list[GenerationJob]:
        """Retrieve jobs in a status not updated since a cutoff, oldest first.

        Args:
            status: Job status to filter by
            updated_before: Cutoff (naive UTC)
            limit: Maximum number of jobs to return (default: 50)
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.status == status)  # type: ignore[arg-type]
            .where(GenerationJob.updated_at < updated_before)  # type: ignore[arg-type]
            .order_by(GenerationJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
