"""Notification delivery tests."""

import pytest

from avatarium.models.avatar import Avatar
from avatarium.models.generation_job import GenerationJob, JobStatus
from avatarium.models.telegram_message import DeliveryStatus, MessageKind
from avatarium.models.user import User
from avatarium.services.notifications import build_caption, chunk, deliver_job_photos


async def add_photos(uow_factory, job, count: int) -> None:
    async with await uow_factory() as uow:
        for i in range(count):
            await uow.photos.add_if_absent(
                job.avatar_id, job.style_id, f"prompt {i}", f"https://cdn.test/{i:03d}.jpg"
            )


def test_chunk_splits_into_bounded_batches():
    assert chunk(list(range(12)), 10) == [list(range(10)), [10, 11]]
    assert chunk([], 10) == []


def test_build_caption():
    assert build_caption("Professional", 7) == "Your Professional photoset is ready: 7 photos"


@pytest.mark.asyncio
class TestDeliverJobPhotos:
    async def test_batches_of_ten_with_caption_on_first(
        self, uow_factory, settings, fake_messenger, make_job
    ):
        # Arrange
        job = await make_job(status=JobStatus.COMPLETED, total_photos=12)
        await add_photos(uow_factory, job, 12)

        # Act
        report = await deliver_job_photos(uow_factory, fake_messenger, settings, job.id)

        # Assert
        assert report.batches == 2
        assert report.sent == 12
        assert report.failed == 0
        assert report.chat_id == 424242
        assert [call["method"] for call in fake_messenger.sent] == [
            "sendMediaGroup",
            "sendMediaGroup",
        ]
        assert [len(call["urls"]) for call in fake_messenger.sent] == [10, 2]
        assert fake_messenger.sent[0]["caption"] == build_caption("Professional", 12)
        assert fake_messenger.sent[1]["caption"] is None

        async with await uow_factory() as uow:
            messages = await uow.telegram_messages.list_by_job(job.id)
        assert len(messages) == 12
        assert all(message.status == DeliveryStatus.SENT for message in messages)
        assert all(message.sent_at is not None for message in messages)

    async def test_single_photo_batch_uses_send_photo(
        self, uow_factory, settings, fake_messenger, make_job
    ):
        job = await make_job(status=JobStatus.COMPLETED, total_photos=11)
        await add_photos(uow_factory, job, 11)

        report = await deliver_job_photos(uow_factory, fake_messenger, settings, job.id)

        assert report.sent == 11
        assert [call["method"] for call in fake_messenger.sent] == ["sendMediaGroup", "sendPhoto"]
        async with await uow_factory() as uow:
            messages = await uow.telegram_messages.list_by_job(job.id)
        kinds = [message.message_kind for message in messages]
        assert kinds.count(MessageKind.PHOTO) == 1

    async def test_failed_batch_is_recorded_and_rest_continues(
        self, uow_factory, settings, fake_messenger, make_job
    ):
        # Arrange: the first call is rejected by Telegram
        job = await make_job(status=JobStatus.COMPLETED, total_photos=12)
        await add_photos(uow_factory, job, 12)
        fake_messenger.fail_calls.add(1)

        # Act
        report = await deliver_job_photos(uow_factory, fake_messenger, settings, job.id)

        # Assert
        assert report.failed == 10
        assert report.sent == 2
        async with await uow_factory() as uow:
            messages = await uow.telegram_messages.list_by_job(job.id)
        failed = [message for message in messages if message.status == DeliveryStatus.FAILED]
        assert len(failed) == 10
        assert all("Too Many Requests" in message.error_message for message in failed)
        assert all(message.sent_at is None for message in failed)

    async def test_skipped_when_chat_not_linked(self, uow_factory, settings, fake_messenger):
        # Arrange: owner never linked Telegram
        async with await uow_factory() as uow:
            user = await uow.users.add(User(device_id="device-no-telegram"))
            avatar = await uow.avatars.add(Avatar(user_id=user.id))
            job = await uow.jobs.add(
                GenerationJob(
                    avatar_id=avatar.id,
                    style_id="lifestyle",
                    status=JobStatus.COMPLETED,
                    total_photos=1,
                )
            )
        await add_photos(uow_factory, job, 1)

        # Act
        report = await deliver_job_photos(uow_factory, fake_messenger, settings, job.id)

        # Assert
        assert report.skipped_reason == "chat_not_linked"
        assert fake_messenger.sent == []

    async def test_skipped_when_telegram_disabled(self, uow_factory, settings, make_job):
        job = await make_job(status=JobStatus.COMPLETED, total_photos=1)
        await add_photos(uow_factory, job, 1)

        report = await deliver_job_photos(uow_factory, None, settings, job.id)

        assert report.skipped_reason == "telegram_disabled"

    async def test_skipped_without_photos(self, uow_factory, settings, fake_messenger, make_job):
        job = await make_job(status=JobStatus.COMPLETED, total_photos=1)

        report = await deliver_job_photos(uow_factory, fake_messenger, settings, job.id)

        assert report.skipped_reason == "no_photos"
        assert fake_messenger.sent == []
