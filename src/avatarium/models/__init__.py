"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from avatarium.models.avatar import Avatar, AvatarStatus
from avatarium.models.generated_photo import GeneratedPhoto
from avatarium.models.generation_job import (
    TERMINAL_JOB_STATUSES,
    GenerationJob,
    InvalidStateTransition,
    JobStatus,
)
from avatarium.models.generation_task import GenerationTask, TaskStatus
from avatarium.models.payment import Payment, PaymentStatus, RefundStatus
from avatarium.models.telegram_message import DeliveryStatus, MessageKind, TelegramMessage
from avatarium.models.user import User

__all__ = [
    "User",
    "Avatar",
    "AvatarStatus",
    "Payment",
    "PaymentStatus",
    "RefundStatus",
    "GenerationJob",
    "JobStatus",
    "TERMINAL_JOB_STATUSES",
    "InvalidStateTransition",
    "GenerationTask",
    "TaskStatus",
    "GeneratedPhoto",
    "TelegramMessage",
    "MessageKind",
    "DeliveryStatus",
]
