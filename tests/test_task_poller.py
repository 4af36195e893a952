"""Task poller tests.

Tests cover:
- Completed engine results are re-hosted, stored once and mark the task completed
- Engine failures and timeouts mark the task failed
- Poll errors leave the task untouched for the next run until it outlives the max wait
- A run stops at its time budget and defers the remaining tasks
- A photo written before a crash is reused instead of duplicated
- The aggregator runs at the end of every pass
"""

from datetime import timedelta

import pytest

from avatarium.core.timezone import utcnow
from avatarium.models.avatar import AvatarStatus
from avatarium.models.generation_job import JobStatus
from avatarium.models.generation_task import TaskStatus
from avatarium.models.payment import RefundStatus
from avatarium.services.exceptions import (
    EnginePermanentError,
    EngineTransientError,
    StorageDownloadError,
)
from avatarium.workers.task_poller import poll_once, process_task


class FakeClock:
    """Monotonic clock returning scripted readings, then repeating the last one."""

    def __init__(self, *readings: float):
        self.readings = list(readings)

    def __call__(self) -> float:
        if len(self.readings) > 1:
            return self.readings.pop(0)
        return self.readings[0]


@pytest.mark.asyncio
class TestIngestion:
    async def test_completed_task_is_rehosted_and_recorded(
        self, uow_factory, settings, collaborators, fake_engine, fake_storage, make_job, make_task
    ):
        # Arrange
        job = await make_job(total_photos=2)
        task = await make_task(job, 0)
        await make_task(job, 1)
        fake_engine.complete(task.external_task_id)

        # Act
        summary = await poll_once(uow_factory, settings, collaborators)

        # Assert
        assert summary.checked == 2
        assert summary.completed == 1
        assert summary.pending == 1

        expected_key = f"generations/{job.avatar_id}/professional/000.jpg"
        assert fake_storage.uploads == [
            (f"https://replicate.delivery/{task.external_task_id}.jpg", expected_key)
        ]

        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
            photos = await uow.photos.list_for_avatar_style(job.avatar_id, "professional")
            stored_job = await uow.jobs.get_by_id(job.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result_url == f"https://cdn.test/{expected_key}"
        assert [photo.image_url for photo in photos] == [stored.result_url]
        assert stored_job.status == JobStatus.PROCESSING
        assert stored_job.completed_photos == 1

    async def test_rehost_failure_falls_back_to_engine_url(
        self, uow_factory, settings, collaborators, fake_engine, fake_storage, make_job, make_task
    ):
        job = await make_job(total_photos=1)
        task = await make_task(job, 0)
        fake_engine.complete(task.external_task_id, url="https://replicate.delivery/out.jpg")
        fake_storage.error = StorageDownloadError("Failed to download: 404")

        await poll_once(uow_factory, settings, collaborators)

        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.result_url == "https://replicate.delivery/out.jpg"

    async def test_engine_failure_marks_task_failed(
        self, uow_factory, settings, collaborators, fake_engine, make_job, make_task
    ):
        job = await make_job(total_photos=2)
        task = await make_task(job, 0)
        await make_task(job, 1)
        fake_engine.fail(task.external_task_id, "NSFW content detected")

        summary = await poll_once(uow_factory, settings, collaborators)

        assert summary.failed == 1
        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error_message == "NSFW content detected"

    async def test_poll_error_leaves_task_untouched(
        self, uow_factory, settings, collaborators, fake_engine, make_job, make_task
    ):
        job = await make_job(total_photos=1)
        task = await make_task(job, 0)
        fake_engine.check_error = EngineTransientError("Rate limit exceeded: 429")

        summary = await poll_once(uow_factory, settings, collaborators)

        assert summary.errors == 1
        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
            stored_job = await uow.jobs.get_by_id(job.id)
        assert stored.status == TaskStatus.PENDING
        assert stored.attempts == 0
        assert stored_job.status == JobStatus.PROCESSING


@pytest.mark.asyncio
class TestTimeouts:
    async def test_expired_pending_task_times_out(
        self, uow_factory, settings, collaborators, fake_engine, make_job, make_task
    ):
        # Arrange: submitted ten minutes ago, engine still working
        job = await make_job(total_photos=1)
        task = await make_task(job, 0, created_at=utcnow() - timedelta(minutes=10))

        # Act
        summary = await poll_once(uow_factory, settings, collaborators)

        # Assert
        assert summary.timed_out == 1
        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
        assert stored.status == TaskStatus.FAILED
        assert "Timed out after 300s" in stored.error_message
        assert stored.attempts == 1

    async def test_young_pending_task_counts_attempt(
        self, uow_factory, settings, collaborators, make_job, make_task
    ):
        job = await make_job(total_photos=1)
        task = await make_task(job, 0)

        await poll_once(uow_factory, settings, collaborators)
        await poll_once(uow_factory, settings, collaborators)

        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
        assert stored.status == TaskStatus.PENDING
        assert stored.attempts == 2

    async def test_unsubmitted_task_waits_then_times_out(
        self, uow_factory, settings, collaborators, fake_engine, make_job, make_task
    ):
        """A reserved task without a handle is never sent to the engine."""
        job = await make_job(total_photos=2)
        young = await make_task(job, 0, external_task_id=None)
        old = await make_task(
            job, 1, external_task_id=None, created_at=utcnow() - timedelta(minutes=10)
        )

        summary = await poll_once(uow_factory, settings, collaborators)

        assert fake_engine.checked == []
        assert summary.pending == 1
        assert summary.timed_out == 1
        async with await uow_factory() as uow:
            assert (await uow.tasks.get_by_id(young.id)).status == TaskStatus.PENDING
            assert (await uow.tasks.get_by_id(old.id)).status == TaskStatus.FAILED

    async def test_expired_task_times_out_when_engine_keeps_erroring(
        self, uow_factory, settings, collaborators, fake_engine, fake_payments, make_job, make_task
    ):
        # Arrange: the engine lost the prediction and answers every poll with an error
        job = await make_job(total_photos=1)
        task = await make_task(job, 0, created_at=utcnow() - timedelta(hours=2))
        fake_engine.check_error = EnginePermanentError("404 prediction not found")

        # Act
        summary = await poll_once(uow_factory, settings, collaborators)

        # Assert
        assert summary.timed_out == 1
        assert summary.errors == 0
        async with await uow_factory() as uow:
            stored = await uow.tasks.get_by_id(task.id)
            stored_job = await uow.jobs.get_by_id(job.id)
        assert stored.status == TaskStatus.FAILED
        assert "last poll error: 404 prediction not found" in stored.error_message
        assert stored_job.status == JobStatus.FAILED
        assert fake_payments.refunds == [("7001234567", 49900)]


@pytest.mark.asyncio
async def test_time_budget_defers_remaining_tasks(
    uow_factory, settings, collaborators, fake_engine, make_job, make_task
):
    # Arrange: three pending tasks, the clock jumps past the budget after the first
    job = await make_job(total_photos=3)
    now = utcnow()
    first = await make_task(job, 0, created_at=now - timedelta(seconds=30))
    second = await make_task(job, 1, created_at=now - timedelta(seconds=20))
    third = await make_task(job, 2, created_at=now - timedelta(seconds=10))
    for task in (first, second, third):
        fake_engine.complete(task.external_task_id)

    # Act
    summary = await poll_once(uow_factory, settings, collaborators, clock=FakeClock(0.0, 1.0, 50.0))

    # Assert
    assert summary.budget_exhausted is True
    assert summary.checked == 1
    assert summary.deferred == 2
    assert fake_engine.checked == [first.external_task_id]

    async with await uow_factory() as uow:
        assert (await uow.tasks.get_by_id(first.id)).status == TaskStatus.COMPLETED
        assert (await uow.tasks.get_by_id(second.id)).status == TaskStatus.PENDING
        assert (await uow.tasks.get_by_id(third.id)).status == TaskStatus.PENDING

    # Next run picks the deferred tasks up
    follow_up = await poll_once(uow_factory, settings, collaborators)
    assert follow_up.completed == 2


@pytest.mark.asyncio
async def test_photo_written_before_crash_is_reused(
    uow_factory, settings, collaborators, fake_engine, fake_storage, make_job, make_task
):
    """The photo exists but the task is still pending: no second photo, no re-upload."""
    # Arrange
    job = await make_job(total_photos=1)
    task = await make_task(job, 0)
    async with await uow_factory() as uow:
        await uow.photos.add_if_absent(
            job.avatar_id, job.style_id, task.prompt, "https://cdn.test/already-there.jpg"
        )
    fake_engine.complete(task.external_task_id)

    # Act
    await poll_once(uow_factory, settings, collaborators)

    # Assert
    assert fake_storage.uploads == []
    async with await uow_factory() as uow:
        stored = await uow.tasks.get_by_id(task.id)
        photo_count = await uow.photos.count_for_avatar_style(job.avatar_id, job.style_id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.result_url == "https://cdn.test/already-there.jpg"
    assert photo_count == 1


@pytest.mark.asyncio
async def test_overlapping_ingestion_writes_one_photo(
    uow_factory, settings, collaborators, fake_engine, make_job, make_task
):
    """Two pollers ingesting the same completion produce one photo and one transition."""
    job = await make_job(total_photos=2)
    task = await make_task(job, 0)
    await make_task(job, 1)
    fake_engine.complete(task.external_task_id)

    await process_task(uow_factory, collaborators, settings, job, task)
    await process_task(uow_factory, collaborators, settings, job, task)

    async with await uow_factory() as uow:
        photo_count = await uow.photos.count_for_avatar_style(job.avatar_id, job.style_id)
        stored_job = await uow.jobs.get_by_id(job.id)
    assert photo_count == 1
    assert stored_job.completed_photos == 1


@pytest.mark.asyncio
async def test_pass_finalizes_and_delivers_completed_job(
    uow_factory,
    settings,
    collaborators,
    fake_engine,
    fake_messenger,
    fake_payments,
    make_job,
    make_task,
    paid_avatar,
):
    # Arrange
    job = await make_job(total_photos=2)
    tasks = [await make_task(job, 0), await make_task(job, 1)]
    for task in tasks:
        fake_engine.complete(task.external_task_id)

    # Act
    summary = await poll_once(uow_factory, settings, collaborators)

    # Assert
    assert summary.completed == 2
    assert summary.aggregation.completed == 1

    async with await uow_factory() as uow:
        stored_job = await uow.jobs.get_by_id(job.id)
        avatar = await uow.avatars.get_by_id(paid_avatar.avatar.id)
        payment = await uow.payments.get_by_id(paid_avatar.payment.id)
    assert stored_job.status == JobStatus.COMPLETED
    assert stored_job.completed_photos == 2
    assert avatar.status == AvatarStatus.READY
    assert avatar.thumbnail_url is not None
    assert payment.refund_status == RefundStatus.NONE
    assert fake_payments.refunds == []
    assert len(fake_messenger.sent) == 1
    assert fake_messenger.sent[0]["method"] == "sendMediaGroup"
