"""
Job handlers for the worker pool.

A handler is an async callable taking a claimed Job. Returning normally
means success (the executor acks); raising means failure (the executor
nacks and the queue decides between retry and dead-letter).

Two families are provided:
- NotificationHandler renders an email template and hands it to a
  MailTransport.
- ScheduledTaskHandler dispatches maintenance kinds through an explicit
  table. Its reminder broadcast re-enters the notification producer.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

import structlog

from echoboard.errors import UnknownJobTypeError
from echoboard.lifecycle.store import UserContact
from echoboard.notifications.templates import render
from echoboard.notifications.transport import MailTransport
from echoboard.queues.producer import NotificationProducer
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import (
    NOTIFICATION_JOB_TYPES,
    SCHEDULED_CHANNEL,
    Job,
    JobState,
    JobType,
)

logger = structlog.get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


class NotificationHandler:
    """
    Sends the email described by a notification job.

    Outside production every message is redirected to ``verified_email``
    so test environments never mail real users.

    Usage:
        handler = NotificationHandler(ResendTransport(key, sender))
        delivery_id = await handler(job)
    """

    def __init__(
        self,
        transport: MailTransport,
        is_production: bool = False,
        verified_email: str | None = None,
    ):
        self._transport = transport
        self._is_production = is_production
        self._verified_email = verified_email

    def _recipient(self, job: Job, to: str) -> str:
        if self._is_production or not self._verified_email:
            return to
        if to != self._verified_email:
            logger.info(
                "Testing mode: redirecting email",
                job_id=job.id,
                original_to=to,
                redirected_to=self._verified_email,
            )
        return self._verified_email

    async def __call__(self, job: Job) -> str:
        if job.type not in NOTIFICATION_JOB_TYPES:
            raise UnknownJobTypeError(f"Not a notification job type: {job.type.value}")

        to = job.payload.get("to")
        if not to:
            raise ValueError(f"Notification job {job.id} has no recipient")

        email = render(job.type, job.payload.get("data") or {})
        recipient = self._recipient(job, to)
        delivery_id = await self._transport.send(recipient, email.subject, email.html, email.text)

        logger.info(
            "Notification delivered",
            job_id=job.id,
            job_type=job.type.value,
            transport=self._transport.name,
            delivery_id=delivery_id,
        )
        return delivery_id


@runtime_checkable
class ReminderAudience(Protocol):
    """Source of users who should receive the periodic reminder."""

    async def recipients(self) -> list[UserContact]: ...


class StaticReminderAudience:
    """Fixed recipient list, used until an eligibility query is wired in."""

    def __init__(self, contacts: list[UserContact] | None = None):
        self._contacts = list(contacts or [])

    @classmethod
    def from_email(cls, email: str | None, name: str = "EchoBoard User") -> "StaticReminderAudience":
        if not email:
            return cls()
        return cls([UserContact(user_id=email, email=email, name=name)])

    async def recipients(self) -> list[UserContact]:
        return list(self._contacts)


class ScheduledTaskHandler:
    """
    Runs maintenance jobs from the scheduled channel.

    Every scheduled JobType has exactly one entry in the dispatch table;
    anything else raises UnknownJobTypeError and is nacked.
    """

    def __init__(
        self,
        queue: DurableQueue,
        producer: NotificationProducer,
        audience: ReminderAudience | None = None,
        cleanup_max_age_ms: int = 7 * 24 * 3600 * 1000,
    ):
        self._queue = queue
        self._producer = producer
        self._audience = audience or StaticReminderAudience()
        self._cleanup_max_age_ms = cleanup_max_age_ms
        self._dispatch: dict[JobType, Callable[[Job], Awaitable[int]]] = {
            JobType.CLEANUP_OLD_FEEDBACK: self.cleanup_old_jobs,
            JobType.GENERATE_DAILY_REPORT: self.generate_daily_report,
            JobType.SEND_REMINDER_EMAILS: self.send_reminder_emails,
        }

    async def __call__(self, job: Job) -> int:
        task = self._dispatch.get(job.type)
        if task is None:
            raise UnknownJobTypeError(f"No scheduled task for job type {job.type.value}")
        logger.info("Running scheduled task", job_id=job.id, job_type=job.type.value)
        return await task(job)

    async def cleanup_old_jobs(self, job: Job) -> int:
        """Prune retained completed and failed jobs past the age window."""
        removed = 0
        for channel in self._queue.channels:
            for state in (JobState.COMPLETED, JobState.FAILED):
                removed += await self._queue.clean(channel, state, self._cleanup_max_age_ms)
        logger.info("Old jobs cleaned up", removed=removed)
        return removed

    async def generate_daily_report(self, job: Job) -> int:
        """Log a per-channel snapshot of job counts."""
        report = {}
        for channel in self._queue.channels:
            report[channel] = (await self._queue.stats(channel)).to_dict()
        logger.info("Daily queue report", report=report)
        return sum(counts["completed"] + counts["failed"] for counts in report.values())

    async def send_reminder_emails(self, job: Job) -> int:
        """Enqueue one reminder notification per audience member."""
        contacts = await self._audience.recipients()
        if not contacts:
            logger.info("No reminder recipients")
            return 0

        tasks = [self._producer.send_reminder_email(c.email, c.name) for c in contacts]
        job_ids = await asyncio.gather(*tasks)
        enqueued = sum(1 for job_id in job_ids if job_id is not None)
        if enqueued < len(contacts):
            logger.warning(
                "Some reminder emails could not be enqueued",
                enqueued=enqueued,
                recipients=len(contacts),
            )
        logger.info("Reminder emails enqueued", count=enqueued)
        return enqueued


async def trigger_reminder_job(queue: DurableQueue) -> str:
    """Enqueue a one-off reminder broadcast outside the cron schedule."""
    job_id = await queue.enqueue(SCHEDULED_CHANNEL, JobType.SEND_REMINDER_EMAILS, {})
    logger.info("Reminder job triggered manually", job_id=job_id)
    return job_id
