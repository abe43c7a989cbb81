"""
Recurring job scheduler for the scheduled channel.

Each registration is keyed by (channel, job type, cron expression).
Registering the same key again is a no-op, so arming the reminder job
on every process start never creates a second concurrent schedule.

When several worker processes arm the same schedule, each fire time is
claimed through the queue store (SET NX on Redis) and only the process
that wins the slot enqueues the job.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from croniter import croniter

from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import JobType

logger = structlog.get_logger(__name__)

# Slots are kept long enough to cover clock skew between processes
SLOT_TTL_MS = 60 * 60 * 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecurringSchedule:
    """One armed cron trigger."""

    channel: str
    job_type: JobType
    cron: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.channel}:{self.job_type.value}:{self.cron}"

    def next_fire(self, after: datetime) -> datetime:
        """First fire time strictly after ``after``."""
        return croniter(self.cron, after).get_next(datetime)


class RecurringScheduler:
    """
    Enqueues jobs on cron schedules without external intervention.

    Usage:
        scheduler = RecurringScheduler(queue)
        scheduler.schedule_recurring("scheduled", JobType.SEND_REMINDER_EMAILS, "0 9 * * *")
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        queue: DurableQueue,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._queue = queue
        self._clock = clock
        self._schedules: dict[str, RecurringSchedule] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def schedules(self) -> list[RecurringSchedule]:
        return list(self._schedules.values())

    def schedule_recurring(
        self,
        channel: str,
        job_type: JobType | str,
        cron: str,
        payload: dict[str, Any] | None = None,
    ) -> str:
        """
        Arm a cron trigger that enqueues ``job_type`` on ``channel``.

        Args:
            channel: Target channel
            job_type: Job kind to enqueue; must belong to the channel
            cron: Five-field cron expression, evaluated in UTC
            payload: Payload for every enqueued job

        Returns:
            The schedule key

        Raises:
            ValueError: Invalid cron expression, unknown channel or a job
                type that belongs to another channel
        """
        job_type = JobType(job_type)
        self._queue.config(channel)
        if job_type.channel != channel:
            raise ValueError(f"Job type {job_type.value} does not belong to channel {channel}")
        if not croniter.is_valid(cron):
            raise ValueError(f"Invalid cron schedule: {cron}")

        schedule = RecurringSchedule(channel, job_type, cron, dict(payload or {}))
        task = self._tasks.get(schedule.key)
        if task is not None and not task.done():
            logger.debug("Recurring schedule already armed", key=schedule.key)
            return schedule.key

        self._schedules[schedule.key] = schedule
        self._tasks[schedule.key] = asyncio.create_task(
            self._run(schedule), name=f"schedule:{schedule.key}"
        )
        logger.info(
            "Recurring schedule armed",
            key=schedule.key,
            next_fire=schedule.next_fire(self._clock()).isoformat(),
        )
        return schedule.key

    async def fire(self, schedule: RecurringSchedule, fire_at: datetime) -> str | None:
        """
        Enqueue the job for one fire time unless another process already did.

        Returns:
            The job id, or None if the slot was taken elsewhere
        """
        fire_at_ms = int(fire_at.timestamp() * 1000)
        claimed = await self._queue.claim_schedule_slot(schedule.key, fire_at_ms, SLOT_TTL_MS)
        if not claimed:
            logger.debug("Schedule slot taken by another process", key=schedule.key)
            return None

        job_id = await self._queue.enqueue(schedule.channel, schedule.job_type, schedule.payload)
        logger.info(
            "Recurring job fired",
            key=schedule.key,
            job_id=job_id,
            fire_at=fire_at.isoformat(),
        )
        return job_id

    async def _run(self, schedule: RecurringSchedule) -> None:
        next_fire = schedule.next_fire(self._clock())
        while True:
            delay = (next_fire - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.fire(schedule, next_fire)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Recurring job could not be enqueued, skipping this run",
                    key=schedule.key,
                    fire_at=next_fire.isoformat(),
                    error=str(e),
                )
            next_fire = schedule.next_fire(max(next_fire, self._clock()))

    def cancel(self, key: str) -> bool:
        """Disarm one schedule. Returns False if it was not armed."""
        self._schedules.pop(key, None)
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._schedules.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
