"""GenerationTask repository for the generation pipeline.

Provides task reservation, poller batch selection via FOR UPDATE SKIP LOCKED,
and conditional status updates that only ever move a task out of pending.
"""

from collections import defaultdict
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from avatarium.core.timezone import utcnow
from avatarium.models.generation_task import GenerationTask, TaskStatus


class GenerationTaskRepository:
    """Repository for GenerationTask entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, task: GenerationTask) -> GenerationTask:
        """Persist new task to database.

        A concurrent insert for the same (job_id, prompt_index) fails with
        IntegrityError at flush or commit time.

        Args:
            task: GenerationTask entity to persist

        Returns:
            Persisted task with generated ID
        """
        self.session.add(task)
        await self.session.flush()
        return task

    async def get_by_id(self, task_id: UUID) -> GenerationTask | None:
        result = await self.session.execute(
            select(GenerationTask).where(GenerationTask.id == task_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_job_and_index(self, job_id: UUID, prompt_index: int) -> GenerationTask | None:
        """Retrieve the task reserved for one prompt of a job."""
        result = await self.session.execute(
            select(GenerationTask)
            .where(GenerationTask.job_id == job_id)  # type: ignore[arg-type]
            .where(GenerationTask.prompt_index == prompt_index)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_job(self, job_id: UUID) -> list[GenerationTask]:
        """Retrieve all tasks of a job ordered by prompt index."""
        result = await self.session.execute(
            select(GenerationTask)
            .where(GenerationTask.job_id == job_id)  # type: ignore[arg-type]
            .order_by(GenerationTask.prompt_index.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def get_pending_batch(self, limit: int = 10) -> list[GenerationTask]:
        """Retrieve pending tasks for polling with row-level locking.

        Query explanation:
        - WHERE status = 'pending': Only unresolved tasks
        - ORDER BY created_at ASC: Oldest first (bounded staleness, no starvation)
        - LIMIT: Batch size for one poller run
        - FOR UPDATE SKIP LOCKED: Concurrent pollers receive disjoint batches

        Args:
            limit: Maximum number of tasks to retrieve (default: 10)

        Returns:
            List of pending tasks
        """
        result = await self.session.execute(
            select(GenerationTask)
            .where(GenerationTask.status == TaskStatus.PENDING)  # type: ignore[arg-type]
            .order_by(GenerationTask.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def set_external_id(self, task_id: UUID, external_task_id: str) -> bool:
        """Record the engine handle of a freshly submitted task.

        Returns:
            True if the task was pending without a handle and now has one
        """
        result = await self.session.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id)  # type: ignore[arg-type]
            .where(GenerationTask.status == TaskStatus.PENDING)  # type: ignore[arg-type]
            .where(GenerationTask.external_task_id.is_(None))  # type: ignore[union-attr]
            .values(external_task_id=external_task_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_completed(self, task_id: UUID, result_url: str) -> bool:
        """Move a pending task to completed with its result location.

        Raises:
            ValueError: If result_url is empty

        Returns:
            True if this caller performed the transition
        """
        if not result_url:
            raise ValueError("result_url cannot be empty")

        result = await self.session.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id)  # type: ignore[arg-type]
            .where(GenerationTask.status == TaskStatus.PENDING)  # type: ignore[arg-type]
            .values(status=TaskStatus.COMPLETED, result_url=result_url, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def mark_failed(self, task_id: UUID, error_message: str) -> bool:
        """Move a pending task to failed.

        Args:
            task_id: Task's unique identifier
            error_message: Error description (truncated to 1000 characters)

        Returns:
            True if this caller performed the transition
        """
        result = await self.session.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id)  # type: ignore[arg-type]
            .where(GenerationTask.status == TaskStatus.PENDING)  # type: ignore[arg-type]
            .values(
                status=TaskStatus.FAILED, error_message=error_message[:1000], updated_at=utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def increment_attempts(self, task_id: UUID) -> None:
        """Count one more poll that found the task unresolved (monitoring only)."""
        await self.session.execute(
            update(GenerationTask)
            .where(GenerationTask.id == task_id)  # type: ignore[arg-type]
            .where(GenerationTask.status == TaskStatus.PENDING)  # type: ignore[arg-type]
            .values(attempts=GenerationTask.attempts + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def count_by_status(self, job_ids: list[UUID]) -> dict[UUID, dict[TaskStatus, int]]:
        """Count tasks per status for each of the given jobs.

        Returns:
            Mapping job_id -> {TaskStatus: count}; jobs without tasks map to {}
        """
        counts: dict[UUID, dict[TaskStatus, int]] = defaultdict(dict)
        if not job_ids:
            return counts

        result = await self.session.execute(
            select(GenerationTask.job_id, GenerationTask.status, func.count(GenerationTask.id))  # type: ignore[arg-type]
            .where(GenerationTask.job_id.in_(job_ids))  # type: ignore[attr-defined]
            .group_by(GenerationTask.job_id, GenerationTask.status)  # type: ignore[arg-type]
        )
        for job_id, status, count in result.all():
            counts[job_id][TaskStatus(status)] = count
        return counts

    async def last_activity(self, job_id: UUID) -> datetime | None:
        """Most recent task update for a job, None if it has no tasks."""
        result = await self.session.execute(
            select(func.max(GenerationTask.updated_at)).where(GenerationTask.job_id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar()

    async def delete_failed(self, job_id: UUID) -> int:
        """Delete a job's failed tasks so their prompts can be dispatched again.

        Returns:
            Number of tasks deleted
        """
        result = await self.session.execute(
            delete(GenerationTask)
            .where(GenerationTask.job_id == job_id)  # type: ignore[arg-type]
            .where(GenerationTask.status == TaskStatus.FAILED)  # type: ignore[arg-type]
        )
        await self.session.flush()
        return result.rowcount  # type: ignore[attr-defined]
