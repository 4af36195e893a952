"""GenerationJob entity - one user-visible request for a set of photos."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from avatarium.core.timezone import utcnow


class JobStatus(str, Enum):
    """Generation job lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job or task state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob aggregates the tasks producing one avatar's photoset.

    Shared state between triggers: the persisted transitions go through the
    conditional updates in GenerationJobRepository. The mark_* methods below
    guard in-memory transitions only.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    avatar_id: UUID = Field(foreign_key="avatars.id", index=True)
    style_id: str = Field(max_length=100)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    total_photos: int = Field(ge=0)
    completed_photos: int = Field(default=0, ge=0)
    error_message: Optional[str] = Field(default=None, max_length=1000)
    payment_id: Optional[UUID] = Field(default=None, foreign_key="payments.id")
    reference_images: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def mark_processing(self) -> None:
        """Transition from pending to processing.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != JobStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be in pending state."
            )
        self.status = JobStatus.PROCESSING

    def mark_completed(self, completed_photos: int) -> None:
        """Transition from processing to completed.

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If completed_photos exceeds total_photos
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be in processing state."
            )
        if completed_photos > self.total_photos:
            raise ValueError(
                f"completed_photos ({completed_photos}) exceeds total_photos ({self.total_photos})"
            )
        self.completed_photos = completed_photos
        self.error_message = None
        self.status = JobStatus.COMPLETED

    def mark_failed(self, error_message: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error_message = error_message[:1000]
        self.status = JobStatus.FAILED

    def reset_for_retry(self) -> None:
        """Transition a terminal job back to pending (admin retry).

        Raises:
            InvalidStateTransition: If the job is not terminal
        """
        if not self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot retry job in {self.status.value} state. Only terminal jobs can be retried."
            )
        self.status = JobStatus.PENDING
        self.completed_photos = 0
        self.error_message = None
