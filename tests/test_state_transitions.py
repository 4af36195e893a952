"""State transition tests for GenerationJob and GenerationTask models.

Tests focus on validating the in-memory lifecycle guards:
- Valid transitions between states
- Invalid transitions are rejected with clear error messages
- Failed state is reachable from any non-terminal state
"""

from uuid import uuid4

import pytest

from avatarium.core.timezone import utcnow
from avatarium.models.generation_job import GenerationJob, InvalidStateTransition, JobStatus
from avatarium.models.generation_task import GenerationTask, TaskStatus


def build_job(status: JobStatus = JobStatus.PENDING, total_photos: int = 3) -> GenerationJob:
    return GenerationJob(
        avatar_id=uuid4(), style_id="professional", status=status, total_photos=total_photos
    )


def build_task(status: TaskStatus = TaskStatus.PENDING) -> GenerationTask:
    return GenerationTask(job_id=uuid4(), prompt_index=0, prompt="Studio portrait", status=status)


def test_job_happy_path():
    """pending → processing → completed."""
    job = build_job()

    job.mark_processing()
    assert job.status == JobStatus.PROCESSING

    job.mark_completed(completed_photos=3)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_photos == 3
    assert job.is_terminal


def test_job_cannot_be_claimed_twice():
    job = build_job()
    job.mark_processing()

    with pytest.raises(InvalidStateTransition) as exc_info:
        job.mark_processing()

    assert "pending" in str(exc_info.value)


def test_job_cannot_complete_from_pending():
    job = build_job()

    with pytest.raises(InvalidStateTransition):
        job.mark_completed(completed_photos=0)


def test_job_completed_count_cannot_exceed_total():
    job = build_job(status=JobStatus.PROCESSING, total_photos=2)

    with pytest.raises(ValueError):
        job.mark_completed(completed_photos=3)


@pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.PROCESSING])
def test_job_failed_from_any_active_state(status):
    job = build_job(status=status)

    job.mark_failed("Generation never started")

    assert job.status == JobStatus.FAILED
    assert job.error_message == "Generation never started"


def test_job_failed_rejected_from_terminal_state():
    job = build_job(status=JobStatus.COMPLETED)

    with pytest.raises(InvalidStateTransition) as exc_info:
        job.mark_failed("late failure")

    assert "terminal" in str(exc_info.value)


def test_job_error_message_truncated():
    job = build_job(status=JobStatus.PROCESSING)

    job.mark_failed("x" * 5000)

    assert len(job.error_message) == 1000


def test_job_reset_for_retry_only_from_terminal():
    job = build_job(status=JobStatus.FAILED)
    job.error_message = "1/3 photos failed to generate"
    job.completed_photos = 2

    job.reset_for_retry()

    assert job.status == JobStatus.PENDING
    assert job.completed_photos == 0
    assert job.error_message is None

    with pytest.raises(InvalidStateTransition):
        build_job(status=JobStatus.PROCESSING).reset_for_retry()


def test_task_completed_requires_result_url():
    task = build_task()

    with pytest.raises(ValueError):
        task.mark_completed("")

    task.mark_completed("https://cdn.test/photo.jpg")
    assert task.status == TaskStatus.COMPLETED
    assert task.result_url == "https://cdn.test/photo.jpg"


def test_task_terminal_states_are_final():
    """A completed task never becomes failed and vice versa."""
    completed = build_task(status=TaskStatus.COMPLETED)
    failed = build_task(status=TaskStatus.FAILED)

    with pytest.raises(InvalidStateTransition):
        completed.mark_failed("Timed out")
    with pytest.raises(InvalidStateTransition):
        failed.mark_completed("https://cdn.test/photo.jpg")


def test_task_age_seconds():
    task = build_task()
    now = utcnow()
    task.created_at = now.replace(microsecond=0)

    assert task.age_seconds(task.created_at) == 0
