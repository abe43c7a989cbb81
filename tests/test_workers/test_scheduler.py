"""Tests for the recurring cron scheduler."""

import asyncio
from datetime import datetime, timezone

import pytest

from echoboard.queues.schemas import EMAIL_CHANNEL, SCHEDULED_CHANNEL, JobType
from echoboard.workers.scheduler import RecurringSchedule, RecurringScheduler

NOON = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestRecurringSchedule:
    def test_key(self):
        schedule = RecurringSchedule(SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, "0 9 * * *")
        assert schedule.key == "scheduled:send_reminder_emails:0 9 * * *"

    def test_next_fire_is_utc_daily(self):
        schedule = RecurringSchedule(SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, "0 9 * * *")
        assert schedule.next_fire(NOON) == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)


class TestRecurringScheduler:
    """Tests for arming and firing schedules."""

    @pytest.mark.asyncio
    async def test_registration_is_idempotent(self, queue):
        await queue.connect()
        scheduler = RecurringScheduler(queue, clock=lambda: NOON)
        try:
            first = scheduler.schedule_recurring(
                SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, "0 9 * * *"
            )
            second = scheduler.schedule_recurring(
                SCHEDULED_CHANNEL, "send_reminder_emails", "0 9 * * *"
            )

            assert first == second
            assert len(scheduler.schedules) == 1
        finally:
            await scheduler.stop()
        assert scheduler.schedules == []

    @pytest.mark.asyncio
    async def test_rejects_invalid_cron(self, queue):
        scheduler = RecurringScheduler(queue)
        with pytest.raises(ValueError, match="Invalid cron"):
            scheduler.schedule_recurring(SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, "every day")

    @pytest.mark.asyncio
    async def test_rejects_type_on_wrong_channel(self, queue):
        scheduler = RecurringScheduler(queue)
        with pytest.raises(ValueError):
            scheduler.schedule_recurring(EMAIL_CHANNEL, JobType.SEND_REMINDER_EMAILS, "0 9 * * *")

    @pytest.mark.asyncio
    async def test_rejects_unknown_channel(self, queue):
        scheduler = RecurringScheduler(queue)
        with pytest.raises(ValueError, match="Unknown channel"):
            scheduler.schedule_recurring("sms", JobType.SEND_REMINDER_EMAILS, "0 9 * * *")

    @pytest.mark.asyncio
    async def test_fire_enqueues_once_per_slot(self, queue):
        await queue.connect()
        schedule = RecurringSchedule(
            SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, "0 9 * * *", {"source": "cron"}
        )
        # Two processes sharing one store
        first = RecurringScheduler(queue)
        second = RecurringScheduler(queue)
        fire_at = datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)

        job_id = await first.fire(schedule, fire_at)
        duplicate = await second.fire(schedule, fire_at)

        assert job_id is not None
        assert duplicate is None
        assert (await queue.stats(SCHEDULED_CHANNEL)).waiting == 1
        job = await queue.get_job(SCHEDULED_CHANNEL, job_id)
        assert job.payload == {"source": "cron"}

    @pytest.mark.asyncio
    async def test_due_schedule_enqueues_without_intervention(self, queue):
        await queue.connect()
        # Clock sits just before the next minute boundary
        now = datetime(2026, 3, 2, 12, 0, 59, 950_000, tzinfo=timezone.utc)
        scheduler = RecurringScheduler(queue, clock=lambda: now)
        try:
            scheduler.schedule_recurring(SCHEDULED_CHANNEL, JobType.CLEANUP_OLD_FEEDBACK, "* * * * *")
            for _ in range(100):
                if (await queue.stats(SCHEDULED_CHANNEL)).waiting:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        job = await queue.dequeue(SCHEDULED_CHANNEL)
        assert job.type == JobType.CLEANUP_OLD_FEEDBACK

    @pytest.mark.asyncio
    async def test_cancel(self, queue):
        await queue.connect()
        scheduler = RecurringScheduler(queue, clock=lambda: NOON)
        key = scheduler.schedule_recurring(SCHEDULED_CHANNEL, JobType.GENERATE_DAILY_REPORT, "0 0 * * *")

        assert scheduler.cancel(key) is True
        assert scheduler.cancel(key) is False
        assert scheduler.schedules == []
        await scheduler.stop()
