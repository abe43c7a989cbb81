"""Tests for FeedbackLifecycleService status updates and their notifications."""

import pytest

from echoboard.errors import FeedbackNotFoundError, InvalidTransitionError
from echoboard.lifecycle.guard import FeedbackStatus
from echoboard.lifecycle.service import FeedbackLifecycleService
from echoboard.queues.producer import NotificationProducer
from echoboard.queues.schemas import EMAIL_CHANNEL, ChannelStats, JobType


@pytest.fixture
def producer(queue):
    return NotificationProducer(queue, enqueue_timeout=1.0, dashboard_url="https://dash.test")


@pytest.fixture
def service(feedback_store, producer):
    return FeedbackLifecycleService(feedback_store, producer)


class TestUpdateStatus:
    """Tests for guard -> persist -> notify ordering."""

    @pytest.mark.asyncio
    async def test_approve_enqueues_approved_email(self, queue, producer, service, feedback_store):
        await queue.connect()

        record = await service.update_status("fb-1", FeedbackStatus.APPROVED)
        await producer.drain()

        assert record.status == FeedbackStatus.APPROVED
        assert await feedback_store.get_feedback_status("fb-1") == FeedbackStatus.APPROVED

        job = await queue.dequeue(EMAIL_CHANNEL)
        assert job is not None
        assert job.type == JobType.FEEDBACK_APPROVED
        assert job.payload["to"] == "ada@example.com"
        assert job.payload["data"]["userName"] == "Ada"
        assert job.payload["data"]["feedbackTitle"] == "Dark mode"
        assert job.payload["data"]["dashboardUrl"] == "https://dash.test"

    @pytest.mark.asyncio
    async def test_reject_enqueues_rejected_email(self, queue, producer, service):
        await queue.connect()

        await service.update_status("fb-1", "rejected")
        await producer.drain()

        job = await queue.dequeue(EMAIL_CHANNEL)
        assert job.type == JobType.FEEDBACK_REJECTED

    @pytest.mark.asyncio
    async def test_denied_transition_writes_and_enqueues_nothing(
        self, queue, producer, service, feedback_store
    ):
        await queue.connect()
        await feedback_store.set_feedback_status("fb-1", FeedbackStatus.REJECTED)
        before = await queue.stats(EMAIL_CHANNEL)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.update_status("fb-1", FeedbackStatus.APPROVED)
        await producer.drain()

        assert exc_info.value.current == "rejected"
        assert exc_info.value.requested == "approved"
        assert "resubmit" in exc_info.value.reason
        assert await feedback_store.get_feedback_status("fb-1") == FeedbackStatus.REJECTED
        assert producer.pending == 0
        assert await queue.stats(EMAIL_CHANNEL) == before == ChannelStats()

    @pytest.mark.asyncio
    async def test_same_status_is_a_noop(self, queue, producer, service, feedback_store):
        await queue.connect()

        record = await service.update_status("fb-1", FeedbackStatus.PENDING)
        await producer.drain()

        assert record.status == FeedbackStatus.PENDING
        assert record.updated_at is None
        assert (await queue.stats(EMAIL_CHANNEL)).waiting == 0

    @pytest.mark.asyncio
    async def test_archive_changes_status_without_notification(self, queue, producer, service):
        await queue.connect()

        record = await service.update_status("fb-1", FeedbackStatus.ARCHIVED)
        await producer.drain()

        assert record.status == FeedbackStatus.ARCHIVED
        assert (await queue.stats(EMAIL_CHANNEL)).waiting == 0

    @pytest.mark.asyncio
    async def test_unknown_owner_skips_notification(self, queue, producer, feedback_store):
        await queue.connect()
        feedback_store._users.clear()
        service = FeedbackLifecycleService(feedback_store, producer)

        record = await service.update_status("fb-1", FeedbackStatus.APPROVED)
        await producer.drain()

        assert record.status == FeedbackStatus.APPROVED
        assert (await queue.stats(EMAIL_CHANNEL)).waiting == 0

    @pytest.mark.asyncio
    async def test_missing_feedback_raises(self, queue, service):
        await queue.connect()
        with pytest.raises(FeedbackNotFoundError):
            await service.update_status("missing", FeedbackStatus.APPROVED)

    @pytest.mark.asyncio
    async def test_status_survives_enqueue_failure(self, queue, producer, service, feedback_store):
        # Queue never connected: the enqueue fails, the status change stands
        record = await service.update_status("fb-1", FeedbackStatus.APPROVED)
        await producer.drain()

        assert record.status == FeedbackStatus.APPROVED
        assert await feedback_store.get_feedback_status("fb-1") == FeedbackStatus.APPROVED
