"""Worker pool, job handlers and recurring scheduler."""

from echoboard.workers.handlers import (
    JobHandler,
    NotificationHandler,
    ReminderAudience,
    ScheduledTaskHandler,
    StaticReminderAudience,
    trigger_reminder_job,
)
from echoboard.workers.pool import ChannelWorker, WorkerPool
from echoboard.workers.scheduler import RecurringSchedule, RecurringScheduler

__all__ = [
    "ChannelWorker",
    "JobHandler",
    "NotificationHandler",
    "RecurringSchedule",
    "RecurringScheduler",
    "ReminderAudience",
    "ScheduledTaskHandler",
    "StaticReminderAudience",
    "WorkerPool",
    "trigger_reminder_job",
]
