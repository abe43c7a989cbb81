"""
Channel configuration for the durable queue and its worker pool.

Each channel carries its own concurrency, retry defaults, retention and
timeouts. Notification channels run wider than scheduled maintenance
channels, whose jobs are rarer and heavier.
"""

from dataclasses import dataclass, field

from echoboard.config.settings import Settings
from echoboard.queues.schemas import EMAIL_CHANNEL, SCHEDULED_CHANNEL, BackoffPolicy


@dataclass
class ChannelConfig:
    """
    Configuration for one named channel.

    Attributes:
        name: Channel name (e.g. "email", "scheduled")

        concurrency: Number of executors draining the channel at once.

        max_attempts: Default total attempts per job before it is moved
            to failed (dead-letter).

        backoff: Default retry delay policy for jobs on this channel.

        completed_retention: How many completed jobs are kept for
            inspection; older ones are deleted.

        failed_retention: How many dead-lettered jobs are kept for
            manual replay.

        job_timeout_seconds: Upper bound on one handler attempt. A
            timeout counts as a handler failure.

        stalled_timeout_ms: Time after which a job still marked active
            is considered abandoned and returned to waiting. Must exceed
            job_timeout_seconds so a live attempt is never reclaimed.
    """

    name: str
    concurrency: int = 1
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    completed_retention: int = 10
    failed_retention: int = 1000
    job_timeout_seconds: float = 60.0
    stalled_timeout_ms: int = 90_000

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.stalled_timeout_ms <= self.job_timeout_seconds * 1000:
            raise ValueError(
                f"stalled_timeout_ms ({self.stalled_timeout_ms}) must exceed "
                f"job_timeout_seconds ({self.job_timeout_seconds}) in milliseconds"
            )


def default_channel_configs(settings: Settings) -> dict[str, ChannelConfig]:
    """
    Build the email and scheduled channel configurations from settings.

    Args:
        settings: Application settings

    Returns:
        Dict mapping channel name to its configuration
    """
    common = {
        "completed_retention": settings.completed_retention,
        "failed_retention": settings.failed_retention,
        "job_timeout_seconds": settings.job_timeout_seconds,
        "stalled_timeout_ms": settings.stalled_timeout_ms,
    }
    return {
        EMAIL_CHANNEL: ChannelConfig(
            name=EMAIL_CHANNEL,
            concurrency=settings.email_concurrency,
            max_attempts=settings.email_max_attempts,
            backoff=BackoffPolicy(kind="exponential", delay_ms=settings.email_backoff_ms),
            **common,
        ),
        SCHEDULED_CHANNEL: ChannelConfig(
            name=SCHEDULED_CHANNEL,
            concurrency=settings.scheduled_concurrency,
            max_attempts=settings.scheduled_max_attempts,
            backoff=BackoffPolicy(kind="fixed", delay_ms=settings.scheduled_backoff_ms),
            **common,
        ),
    }
