"""Repository layer for the avatarium backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from avatarium.repositories.avatar import AvatarRepository
from avatarium.repositories.generated_photo import GeneratedPhotoRepository
from avatarium.repositories.generation_job import GenerationJobRepository
from avatarium.repositories.generation_task import GenerationTaskRepository
from avatarium.repositories.payment import PaymentRepository
from avatarium.repositories.telegram_message import TelegramMessageRepository
from avatarium.repositories.user import UserRepository

__all__ = [
    "UserRepository",
    "AvatarRepository",
    "PaymentRepository",
    "GenerationJobRepository",
    "GenerationTaskRepository",
    "GeneratedPhotoRepository",
    "TelegramMessageRepository",
]
