"""Stuck-job sweep tests."""

from datetime import timedelta

import pytest

from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import JobStatus
from avatarium.services.stuck_jobs import find_stuck_jobs, sweep_stuck_jobs


@pytest.mark.asyncio
async def test_stalled_dispatch_is_failed_and_refunded(
    uow_factory, settings, collaborators, fake_payments, make_job, make_task
):
    """A lost chunk: only one of three units was ever reserved."""
    # Arrange
    long_ago = utcnow() - timedelta(minutes=30)
    job = await make_job(total_photos=3, updated_at=long_ago)
    await make_task(job, 0, created_at=long_ago)

    # Act
    summary = await sweep_stuck_jobs(uow_factory, collaborators, settings)

    # Assert
    assert summary.failed_job_ids == [job.id]
    assert len(fake_payments.refunds) == 1
    async with await uow_factory() as uow:
        stored = await uow.jobs.get_by_id(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Generation stalled: 1/3 photos were submitted"


@pytest.mark.asyncio
async def test_fully_dispatched_job_is_left_to_poller(uow_factory, settings, make_job, make_task):
    long_ago = utcnow() - timedelta(minutes=30)
    job = await make_job(total_photos=2, updated_at=long_ago)
    await make_task(job, 0, created_at=long_ago)
    await make_task(job, 1, created_at=long_ago)

    assert await find_stuck_jobs(uow_factory, settings) == []


@pytest.mark.asyncio
async def test_recent_task_activity_keeps_job_alive(uow_factory, settings, make_job, make_task):
    long_ago = utcnow() - timedelta(minutes=30)
    job = await make_job(total_photos=3, updated_at=long_ago)
    await make_task(job, 0)

    assert await find_stuck_jobs(uow_factory, settings) == []


@pytest.mark.asyncio
async def test_unclaimed_pending_job_is_failed(uow_factory, settings, collaborators, make_job):
    stale = await make_job(status=JobStatus.PENDING, updated_at=utcnow() - timedelta(minutes=20))
    await make_job(status=JobStatus.PENDING)

    summary = await sweep_stuck_jobs(uow_factory, collaborators, settings)

    assert summary.checked == 1
    assert summary.failed_job_ids == [stale.id]
    async with await uow_factory() as uow:
        stored = await uow.jobs.get_by_id(stale.id)
    assert stored.error_message == "Generation never started"
