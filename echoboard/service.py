"""
Notification service - composition root of the pipeline.

Builds the queue, producer, handlers, worker pool, recurring scheduler
and health monitor once, from settings, and hands each component the
collaborators it needs. Nothing in the pipeline reaches for a global
queue instance; callers hold a reference to this service instead.
"""

import asyncio
from typing import Any

import structlog

from echoboard.config.settings import Settings, get_settings
from echoboard.errors import QueueError
from echoboard.lifecycle.service import FeedbackLifecycleService
from echoboard.lifecycle.store import FeedbackStore
from echoboard.monitoring.health import HealthMonitor, WorkerPoolHealth
from echoboard.notifications.transport import MailTransport, MockMailTransport, ResendTransport
from echoboard.queues.base import BaseJobStore
from echoboard.queues.config import default_channel_configs
from echoboard.queues.memory_store import InMemoryJobStore
from echoboard.queues.producer import NotificationProducer
from echoboard.queues.queue import DurableQueue
from echoboard.queues.redis_store import RedisJobStore
from echoboard.queues.schemas import (
    EMAIL_CHANNEL,
    SCHEDULED_CHANNEL,
    JobOptions,
    JobType,
)
from echoboard.workers.handlers import (
    NotificationHandler,
    ReminderAudience,
    ScheduledTaskHandler,
    StaticReminderAudience,
    trigger_reminder_job,
)
from echoboard.workers.pool import WorkerPool
from echoboard.workers.scheduler import RecurringScheduler

logger = structlog.get_logger(__name__)


def create_job_store(settings: Settings) -> BaseJobStore:
    """Build the job store selected by QUEUE_BACKEND."""
    if settings.queue_backend == "memory":
        return InMemoryJobStore()
    return RedisJobStore(
        str(settings.redis_url),
        prefix=settings.queue_prefix,
        connect_timeout=settings.redis_connect_timeout_seconds,
        command_timeout=settings.redis_command_timeout_seconds,
    )


def create_mail_transport(settings: Settings, use_mock: bool = False) -> MailTransport:
    """Build the Resend transport, or a recording mock when asked or unconfigured."""
    if use_mock:
        return MockMailTransport()
    if not settings.mail_configured:
        logger.warning("RESEND_API_KEY not set, emails will only be logged")
        return MockMailTransport()
    return ResendTransport(
        api_key=settings.resend_api_key,
        from_email=settings.from_email,
        api_url=settings.resend_api_url,
        timeout=settings.mail_timeout_seconds,
    )


class NotificationService:
    """
    Owns every pipeline component for the lifetime of a process.

    Usage:
        service = NotificationService()
        await service.start()        # workers, monitor, reminder schedule
        service.producer.send_welcome_email("a@x.com", "Ada")
        stats = await service.get_queue_stats()
        await service.stop()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: BaseJobStore | None = None,
        transport: MailTransport | None = None,
        audience: ReminderAudience | None = None,
        use_mock_mail: bool = False,
    ):
        """
        Initialize the service.

        Args:
            settings: Configuration (defaults to environment settings)
            store: Job store (or create from QUEUE_BACKEND)
            transport: Mail transport (or create from RESEND_* settings)
            audience: Reminder recipients (defaults to VERIFIED_EMAIL)
            use_mock_mail: Record emails instead of sending them
        """
        self._settings = settings or get_settings()
        s = self._settings

        self._queue = DurableQueue(
            store or create_job_store(s),
            default_channel_configs(s),
        )
        self._producer = NotificationProducer(
            self._queue,
            enqueue_timeout=s.enqueue_timeout_seconds,
            dashboard_url=s.dashboard_url,
        )
        self._transport = transport or create_mail_transport(s, use_mock=use_mock_mail)

        handlers = {
            EMAIL_CHANNEL: NotificationHandler(
                self._transport,
                is_production=s.is_production,
                verified_email=s.verified_email,
            ),
            SCHEDULED_CHANNEL: ScheduledTaskHandler(
                self._queue,
                self._producer,
                audience or StaticReminderAudience.from_email(s.verified_email),
                cleanup_max_age_ms=s.cleanup_max_age_hours * 3600 * 1000,
            ),
        }
        self._pool = WorkerPool(
            self._queue,
            handlers,
            poll_interval=s.queue_poll_interval_seconds,
            backoff_base_delay=s.worker_backoff_base_delay,
            backoff_max_delay=s.worker_backoff_max_delay,
        )
        self._scheduler = RecurringScheduler(self._queue)
        self._monitor = HealthMonitor(
            self._queue,
            self._pool,
            interval=s.health_check_interval_seconds,
            probe_timeout=s.health_probe_timeout_seconds,
            failure_threshold=s.health_failure_threshold,
            reconnect_cooldown=s.reconnect_cooldown_seconds,
            shutdown_grace=s.shutdown_grace_seconds,
        )

        self._connected = False
        self._running = False
        self._stopped = asyncio.Event()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def queue(self) -> DurableQueue:
        return self._queue

    @property
    def producer(self) -> NotificationProducer:
        return self._producer

    @property
    def transport(self) -> MailTransport:
        return self._transport

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def scheduler(self) -> RecurringScheduler:
        return self._scheduler

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    @property
    def health(self) -> WorkerPoolHealth:
        return self._monitor.health

    @property
    def is_running(self) -> bool:
        return self._running

    def lifecycle(self, store: FeedbackStore) -> FeedbackLifecycleService:
        """Feedback status updates that notify through this service's producer."""
        return FeedbackLifecycleService(store, self._producer)

    async def connect(self) -> None:
        """Connect the queue without starting workers (producer-only processes)."""
        if not self._connected:
            await self._queue.connect()
            self._connected = True

    async def start(self) -> None:
        """Start workers, the health monitor and the reminder schedule."""
        if self._running:
            return
        await self.connect()
        self._stopped.clear()
        self._running = True

        await self._pool.start()
        await self._monitor.start()
        self._scheduler.schedule_recurring(
            SCHEDULED_CHANNEL,
            JobType.SEND_REMINDER_EMAILS,
            self._settings.reminder_cron,
        )
        logger.info(
            "Notification service started",
            channels={name: c.concurrency for name, c in self._queue.channels.items()},
            transport=self._transport.name,
        )

    async def run(self) -> None:
        """Start, then block until stop() is called."""
        await self.start()
        await self._stopped.wait()

    async def stop(self) -> None:
        """
        Shut down in dependency order.

        New dequeues stop immediately; in-flight handlers get
        SHUTDOWN_GRACE_SECONDS to finish before they are abandoned.
        """
        logger.info("Stopping notification service")
        await self._monitor.stop()
        await self._scheduler.stop()
        await self._producer.drain(timeout=self._settings.enqueue_timeout_seconds)
        await self._pool.stop(self._settings.shutdown_grace_seconds)
        if self._connected:
            await self._queue.close()
            self._connected = False
        self._running = False
        self._stopped.set()
        logger.info("Notification service stopped")

    def enqueue_notification(
        self,
        channel: str,
        job_type: JobType | str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> "asyncio.Task[str | None]":
        """Fire-and-forget enqueue; see NotificationProducer.enqueue_notification."""
        return self._producer.enqueue_notification(channel, job_type, payload, options)

    async def trigger_reminder_job(self) -> str:
        return await trigger_reminder_job(self._queue)

    async def get_queue_stats(self) -> dict[str, Any]:
        """
        Job counts per channel plus worker status, for health reporting.

        Returns:
            {"per_channel": {channel: {waiting, active, delayed, completed,
            failed} or None if unavailable}, "workers_running": {channel:
            bool}, "status": str}
        """
        per_channel: dict[str, dict[str, int] | None] = {}
        for channel in self._queue.channels:
            try:
                per_channel[channel] = (await self._queue.stats(channel)).to_dict()
            except QueueError as e:
                logger.warning("Queue stats unavailable", channel=channel, error=str(e))
                per_channel[channel] = None

        health = self._monitor.health
        return {
            "per_channel": per_channel,
            "workers_running": dict(health.workers_running),
            "status": health.status,
        }
