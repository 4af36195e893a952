"""GenerationTask entity - one unit of work (one requested photo) within a job."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import InvalidStateTransition


class TaskStatus(str, Enum):
    """Generation task status. completed and failed are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationTask(SQLModel, table=True):
    """GenerationTask tracks one engine prediction for one prompt of a job.

    The row is inserted (reserved) before the engine is called, so
    (job_id, prompt_index) is unique and a unit is submitted at most once.
    external_task_id stays NULL until submission succeeds.
    """

    __tablename__ = "generation_tasks"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("job_id", "prompt_index", name="uq_generation_tasks_job_prompt"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)
    prompt_index: int = Field(ge=0)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    status: TaskStatus = Field(default=TaskStatus.PENDING, index=True)
    external_task_id: Optional[str] = Field(default=None, max_length=255)
    attempts: int = Field(default=0, ge=0)
    result_url: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def mark_completed(self, result_url: str) -> None:
        """Transition from pending to completed.

        Raises:
            InvalidStateTransition: If current status is not pending
            ValueError: If result_url is empty
        """
        if self.status != TaskStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Task must be in pending state."
            )
        if not result_url:
            raise ValueError("result_url is required")
        self.result_url = result_url
        self.status = TaskStatus.COMPLETED

    def mark_failed(self, error_message: str) -> None:
        """Transition from pending to failed.

        Raises:
            InvalidStateTransition: If the task is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error_message = error_message[:1000]
        self.status = TaskStatus.FAILED
