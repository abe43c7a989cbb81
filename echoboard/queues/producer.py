"""
Fire-and-forget notification producer.

Called by the request-handling layer after a mutation has committed.
Each enqueue runs as its own task bounded by a timeout; failures are
logged and counted but never raised, because the mutation that
triggered the notification must not be rolled back or reported as
failed. Delivery is therefore best-effort: a job lost to a transport
outage at enqueue time is not recovered.
"""

import asyncio
from typing import Any

import structlog

from echoboard.lifecycle.store import FeedbackRecord, UserContact
from echoboard.observability.metrics import get_metrics
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import EMAIL_CHANNEL, JobOptions, JobType

logger = structlog.get_logger(__name__)


class NotificationProducer:
    """
    Schedules enqueue calls without blocking the caller.

    Usage:
        producer = NotificationProducer(queue)
        producer.send_welcome_email("a@x.com", "Ada")  # returns immediately

        # on shutdown
        await producer.drain()
    """

    def __init__(
        self,
        queue: DurableQueue,
        enqueue_timeout: float = 30.0,
        dashboard_url: str = "https://echoboard.dev",
    ):
        """
        Initialize the producer.

        Args:
            queue: Durable queue to enqueue into
            enqueue_timeout: Upper bound in seconds on a single enqueue
            dashboard_url: Link included in status notifications
        """
        self._queue = queue
        self._timeout = enqueue_timeout
        self._dashboard_url = dashboard_url
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of enqueue tasks still in flight."""
        return len(self._pending)

    def enqueue_notification(
        self,
        channel: str,
        job_type: JobType | str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> "asyncio.Task[str | None]":
        """
        Schedule an enqueue and return immediately.

        Must be called from a running event loop.

        Returns:
            Task resolving to the job id, or None if the enqueue failed
        """
        kind = getattr(job_type, "value", job_type)
        task = asyncio.create_task(
            self._enqueue(channel, job_type, payload, options),
            name=f"enqueue:{channel}:{kind}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _enqueue(
        self,
        channel: str,
        job_type: JobType | str,
        payload: dict[str, Any],
        options: JobOptions | None,
    ) -> str | None:
        try:
            return await asyncio.wait_for(
                self._queue.enqueue(channel, job_type, payload, options),
                timeout=self._timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            get_metrics().enqueue_failures.labels(channel=channel).inc()
            logger.warning(
                "Failed to enqueue notification, continuing without it",
                channel=channel,
                job_type=getattr(job_type, "value", job_type),
                error=str(e) or type(e).__name__,
            )
            return None

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight enqueue tasks, cancelling any still running after timeout."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Abandoned in-flight enqueues", count=len(pending))

    # Notification helpers

    def _feedback_data(self, contact: UserContact, feedback: FeedbackRecord) -> dict[str, Any]:
        return {
            "userName": contact.name,
            "feedbackTitle": feedback.title,
            "feedbackMessage": feedback.message,
            "feedbackRating": feedback.rating,
            "feedbackId": feedback.id,
        }

    def send_feedback_created_email(
        self, contact: UserContact, feedback: FeedbackRecord
    ) -> "asyncio.Task[str | None]":
        return self.enqueue_notification(
            EMAIL_CHANNEL,
            JobType.FEEDBACK_CREATED,
            {"to": contact.email, "data": self._feedback_data(contact, feedback)},
        )

    def send_feedback_approved_email(
        self, contact: UserContact, feedback: FeedbackRecord
    ) -> "asyncio.Task[str | None]":
        data = self._feedback_data(contact, feedback)
        data["dashboardUrl"] = self._dashboard_url
        return self.enqueue_notification(
            EMAIL_CHANNEL,
            JobType.FEEDBACK_APPROVED,
            {"to": contact.email, "data": data},
        )

    def send_feedback_rejected_email(
        self, contact: UserContact, feedback: FeedbackRecord
    ) -> "asyncio.Task[str | None]":
        data = self._feedback_data(contact, feedback)
        data["dashboardUrl"] = self._dashboard_url
        return self.enqueue_notification(
            EMAIL_CHANNEL,
            JobType.FEEDBACK_REJECTED,
            {"to": contact.email, "data": data},
        )

    def send_welcome_email(self, email: str, name: str) -> "asyncio.Task[str | None]":
        return self.enqueue_notification(
            EMAIL_CHANNEL,
            JobType.WELCOME_EMAIL,
            {"to": email, "data": {"userName": name}},
        )

    def send_reminder_email(self, email: str, name: str) -> "asyncio.Task[str | None]":
        return self.enqueue_notification(
            EMAIL_CHANNEL,
            JobType.REMINDER_EMAIL,
            {"to": email, "data": {"userName": name, "dashboardUrl": self._dashboard_url}},
        )
