"""Unit of Work for the avatarium backend.

Provides transaction management with automatic commit/rollback and access to all repositories.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from avatarium.repositories.avatar import AvatarRepository
from avatarium.repositories.generated_photo import GeneratedPhotoRepository
from avatarium.repositories.generation_job import GenerationJobRepository
from avatarium.repositories.generation_task import GenerationTaskRepository
from avatarium.repositories.payment import PaymentRepository
from avatarium.repositories.telegram_message import TelegramMessageRepository
from avatarium.repositories.user import UserRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Unit of Work pattern implementation.

    Manages one database transaction and exposes every repository on it.
    Use as async context manager for automatic commit/rollback.

    Example:
        async with await uow_factory() as uow:
            if await uow.jobs.claim_for_processing(job_id):
                job = await uow.jobs.get_by_id(job_id)
            # Commits on successful exit, rolls back on exception
    """

    def __init__(self, session: AsyncSession):
        """Initialize UnitOfWork with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

        self.users = UserRepository(session)
        self.avatars = AvatarRepository(session)
        self.payments = PaymentRepository(session)
        self.jobs = GenerationJobRepository(session)
        self.tasks = GenerationTaskRepository(session)
        self.photos = GeneratedPhotoRepository(session)
        self.telegram_messages = TelegramMessageRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager with automatic commit/rollback.

        The session is closed either way so its connection returns to the pool.

        Returns:
            False: Always re-raise exceptions after rollback
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Create a factory function that produces UnitOfWork instances.

    Args:
        session_factory: SQLAlchemy async session factory

    Returns:
        Callable that creates UnitOfWork instances from new sessions

    Example:
        session_factory = setup_db_session(db_url, pool_size=20)
        uow_factory = create_uow_factory(session_factory)

        async with await uow_factory() as uow:
            await uow.jobs.add(job)
    """

    async def _create_uow():
        """Create a new UnitOfWork instance with a new session."""
        session = session_factory()
        return UnitOfWork(session)

    return _create_uow
