"""pytest fixtures for avatarium backend tests.

Provides:
- db_engine: Function-scoped database (fresh SQLite file, or the shared
  PostgreSQL testcontainer when TEST_DATABASE=postgres)
- session / uow_factory: Sessions and UnitOfWork factory on that database
- settings: Settings in test mode with no inter-batch delay
- fake_* / collaborators: In-memory stand-ins for the external services
- paid_avatar, make_job, make_task: Entity builders
"""

import os
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import AsyncGenerator, Optional

# Settings are read from the environment at import time by avatarium.app
os.environ["APP_ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["JOB_CALLBACK_SECRET"] = "test-callback-secret"
os.environ["TELEGRAM_BATCH_DELAY_SECONDS"] = "0"
os.environ.pop("QSTASH_TOKEN", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

import avatarium.models  # noqa: E402,F401
from avatarium.core.config import Settings  # noqa: E402
from avatarium.core.timezone import utcnow  # noqa: E402
from avatarium.models.avatar import Avatar  # noqa: E402
from avatarium.models.generation_job import GenerationJob, JobStatus  # noqa: E402
from avatarium.models.generation_task import GenerationTask, TaskStatus  # noqa: E402
from avatarium.models.payment import Payment, PaymentStatus  # noqa: E402
from avatarium.models.user import User  # noqa: E402
from avatarium.services.collaborators import Collaborators  # noqa: E402
from avatarium.services.exceptions import (  # noqa: E402
    DeliveryError,
    EnginePermanentError,
    QueuePublishError,
)
from avatarium.services.image_generation.replicate_client import (  # noqa: E402
    EngineTaskState,
    TaskStatusResult,
)
from avatarium.services.payments.tbank_client import RefundResult  # noqa: E402
from avatarium.uow import create_uow_factory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent
USE_POSTGRES = os.environ.get("TEST_DATABASE") == "postgres"


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Only started when TEST_DATABASE=postgres; SQLite is used otherwise.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    if not USE_POSTGRES:
        yield None
        return

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_avatarium",
    ) as container:
        env = os.environ.copy()
        env["DATABASE_URL"] = container.get_connection_url(driver="psycopg")

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def db_engine(postgres_container, tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide an empty database for one test."""
    if postgres_container is not None:
        engine = create_async_engine(postgres_container.get_connection_url(driver="psycopg"))
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    if postgres_container is not None:
        # Children first so foreign keys never block the delete
        async with engine.begin() as conn:
            for table in reversed(SQLModel.metadata.sorted_tables):
                await conn.execute(table.delete())
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session; uncommitted work is rolled back."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        DATABASE_URL="sqlite+aiosqlite://",
        APP_ENV="test",
        TELEGRAM_BATCH_DELAY_SECONDS=0,
        DISPATCH_CHUNK_SIZE=2,
        DISPATCH_CONCURRENCY=3,
    )


# External service stand-ins


class FakeEngine:
    """Generation engine that hands out sequential ids and scripted statuses."""

    def __init__(self):
        self.submitted: list[tuple[str, list[str]]] = []
        self.statuses: dict[str, TaskStatusResult] = {}
        self.failing_prompts: set[str] = set()
        self.check_error: Optional[Exception] = None
        self.checked: list[str] = []

    async def submit(self, prompt: str, reference_images: list[str]) -> str:
        if prompt in self.failing_prompts:
            raise EnginePermanentError("Content policy violation")
        self.submitted.append((prompt, list(reference_images)))
        return f"pred-{len(self.submitted)}"

    async def check_status(self, external_task_id: str) -> TaskStatusResult:
        self.checked.append(external_task_id)
        if self.check_error is not None:
            raise self.check_error
        return self.statuses.get(external_task_id, TaskStatusResult(state=EngineTaskState.PENDING))

    def complete(self, external_task_id: str, url: Optional[str] = None) -> None:
        self.statuses[external_task_id] = TaskStatusResult(
            state=EngineTaskState.COMPLETED,
            result_url=url or f"https://replicate.delivery/{external_task_id}.jpg",
        )

    def fail(self, external_task_id: str, error: str = "Model error") -> None:
        self.statuses[external_task_id] = TaskStatusResult(
            state=EngineTaskState.FAILED, error=error
        )


class FakeStorage:
    def __init__(self):
        self.uploads: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None

    async def upload_from_url(self, source_url: str, key: str) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append((source_url, key))
        return f"https://cdn.test/{key}"


class FakePayments:
    def __init__(self):
        self.refunds: list[tuple[str, int]] = []
        self.error: Optional[Exception] = None

    async def refund(self, provider_payment_id: str, amount_minor_units: int) -> RefundResult:
        if self.error is not None:
            raise self.error
        self.refunds.append((provider_payment_id, amount_minor_units))
        return RefundResult(refund_id=provider_payment_id, status="REVERSED")


class FakeMessenger:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_calls: set[int] = set()
        self.calls = 0

    def _record(self, entry: dict) -> None:
        self.calls += 1
        if self.calls in self.fail_calls:
            raise DeliveryError("sendMediaGroup failed (429): Too Many Requests")
        self.sent.append(entry)

    async def send_photo(self, chat_id: int, photo_url: str, caption: Optional[str] = None):
        self._record(
            {"method": "sendPhoto", "chat_id": chat_id, "urls": [photo_url], "caption": caption}
        )

    async def send_media_group(
        self, chat_id: int, photo_urls: list[str], caption: Optional[str] = None
    ):
        self._record(
            {
                "method": "sendMediaGroup",
                "chat_id": chat_id,
                "urls": list(photo_urls),
                "caption": caption,
            }
        )


class FakeQueue:
    def __init__(self):
        self.published: list = []
        self.error: Optional[Exception] = None

    async def publish_chunk(self, payload) -> str:
        if self.error is not None:
            raise self.error
        self.published.append(payload)
        return f"msg-{len(self.published)}"

    def break_down(self) -> None:
        self.error = QueuePublishError("QStash network error: connection refused")


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fake_payments() -> FakePayments:
    return FakePayments()


@pytest.fixture
def fake_messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def collaborators(fake_engine, fake_storage, fake_payments, fake_messenger) -> Collaborators:
    """Collaborators without a queue: dispatch runs inline."""
    return Collaborators(
        engine=fake_engine,  # type: ignore[arg-type]
        storage=fake_storage,  # type: ignore[arg-type]
        payments=fake_payments,  # type: ignore[arg-type]
        messenger=fake_messenger,  # type: ignore[arg-type]
    )


# Entity builders


@dataclass
class PaidAvatar:
    user: User
    avatar: Avatar
    payment: Payment


@pytest_asyncio.fixture
async def paid_avatar(uow_factory) -> PaidAvatar:
    """User with a linked Telegram chat, one draft avatar and a succeeded payment."""
    async with await uow_factory() as uow:
        user = await uow.users.add(User(device_id="device-001", telegram_user_id=424242))
        avatar = await uow.avatars.add(Avatar(user_id=user.id, name="Test avatar"))
        payment = await uow.payments.add(
            Payment(
                user_id=user.id,
                provider_payment_id="7001234567",
                amount=Decimal("499.00"),
                status=PaymentStatus.SUCCEEDED,
            )
        )
    return PaidAvatar(user=user, avatar=avatar, payment=payment)


@pytest.fixture
def make_job(uow_factory, paid_avatar):
    """Build a job for the paid avatar directly in the database."""

    async def _make_job(
        total_photos: int = 3,
        status: JobStatus = JobStatus.PROCESSING,
        style_id: str = "professional",
        updated_at: Optional[datetime] = None,
        with_payment: bool = True,
    ) -> GenerationJob:
        now = utcnow()
        async with await uow_factory() as uow:
            return await uow.jobs.add(
                GenerationJob(
                    avatar_id=paid_avatar.avatar.id,
                    style_id=style_id,
                    status=status,
                    total_photos=total_photos,
                    payment_id=paid_avatar.payment.id if with_payment else None,
                    reference_images=["https://cdn.test/ref-1.jpg", "https://cdn.test/ref-2.jpg"],
                    created_at=updated_at or now,
                    updated_at=updated_at or now,
                )
            )

    return _make_job


@pytest.fixture
def make_task(uow_factory):
    """Build a task row for a job directly in the database."""

    async def _make_task(
        job: GenerationJob,
        prompt_index: int,
        status: TaskStatus = TaskStatus.PENDING,
        external_task_id: Optional[str] = "auto",
        created_at: Optional[datetime] = None,
        result_url: Optional[str] = None,
    ) -> GenerationTask:
        now = utcnow()
        if external_task_id == "auto":
            external_task_id = f"ext-{job.id.hex[:8]}-{prompt_index}"
        async with await uow_factory() as uow:
            return await uow.tasks.add(
                GenerationTask(
                    job_id=job.id,
                    prompt_index=prompt_index,
                    prompt=f"{job.style_id} prompt {prompt_index}",
                    status=status,
                    external_task_id=external_task_id,
                    result_url=result_url,
                    created_at=created_at or now,
                    updated_at=created_at or now,
                )
            )

    return _make_task
