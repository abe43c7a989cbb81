"""
Job data model shared by producers, stores and workers.

Jobs are serialized to flat string maps so they can be stored as Redis
hashes; the in-memory store keeps the same representation.
"""

import enum
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

EMAIL_CHANNEL = "email"
SCHEDULED_CHANNEL = "scheduled"


class JobType(str, enum.Enum):
    """Closed set of job kinds. Each kind belongs to exactly one channel."""

    # Notification kinds (email channel)
    FEEDBACK_CREATED = "feedback_created"
    FEEDBACK_UPDATED = "feedback_updated"
    FEEDBACK_DELETED = "feedback_deleted"
    FEEDBACK_APPROVED = "feedback_approved"
    FEEDBACK_REJECTED = "feedback_rejected"
    WELCOME_EMAIL = "welcome_email"
    REMINDER_EMAIL = "reminder_email"

    # Maintenance kinds (scheduled channel)
    CLEANUP_OLD_FEEDBACK = "cleanup_old_feedback"
    GENERATE_DAILY_REPORT = "generate_daily_report"
    SEND_REMINDER_EMAILS = "send_reminder_emails"

    @property
    def channel(self) -> str:
        return SCHEDULED_CHANNEL if self in SCHEDULED_JOB_TYPES else EMAIL_CHANNEL


SCHEDULED_JOB_TYPES = frozenset({
    JobType.CLEANUP_OLD_FEEDBACK,
    JobType.GENERATE_DAILY_REPORT,
    JobType.SEND_REMINDER_EMAILS,
})

NOTIFICATION_JOB_TYPES = frozenset(JobType) - SCHEDULED_JOB_TYPES


class JobState(str, enum.Enum):
    """Where a job sits in its channel."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class NackOutcome(str, enum.Enum):
    """Result of a negative acknowledgement."""

    RETRY = "retry"  # moved to delayed, will be attempted again
    DEAD_LETTER = "dead_letter"  # attempts exhausted, moved to failed
    STALE = "stale"  # caller no longer holds the claim; nothing changed


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay before a failed job is retried.

    Attributes:
        kind: "fixed" (constant delay) or "exponential" (doubling delay)
        delay_ms: Base delay in milliseconds
    """

    kind: Literal["fixed", "exponential"] = "exponential"
    delay_ms: int = 2000

    def __post_init__(self) -> None:
        if self.kind not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff kind: {self.kind}")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")

    def delay_for(self, attempts_made: int) -> int:
        """
        Milliseconds to wait after the given number of failed attempts.

        The first retry waits the base delay; exponential policies double
        the wait on every further failure.
        """
        if self.kind == "fixed":
            return self.delay_ms
        return self.delay_ms * (2 ** max(attempts_made - 1, 0))


@dataclass(frozen=True)
class JobOptions:
    """Per-job overrides of the channel defaults."""

    max_attempts: int | None = None
    backoff: BackoffPolicy | None = None
    delay_ms: int = 0

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


def now_ms() -> int:
    """Wall clock in milliseconds, used for delays and timestamps."""
    return int(time.time() * 1000)


@dataclass
class Job:
    """
    One unit of deferred work.

    The queue exclusively owns job state; a worker borrows a job between
    a successful dequeue and the matching ack or nack. ``token`` identifies
    that borrow so late acknowledgements from an abandoned attempt are
    rejected.
    """

    id: str
    channel: str
    type: JobType
    payload: dict[str, Any]
    max_attempts: int
    backoff: BackoffPolicy
    attempts: int = 0
    state: JobState = JobState.WAITING
    created_at: int = field(default_factory=now_ms)
    processed_at: int | None = None
    finished_at: int | None = None
    last_error: str | None = None
    token: str | None = None

    def to_fields(self) -> dict[str, str]:
        """Flatten to a string map for hash storage."""
        fields = {
            "id": self.id,
            "channel": self.channel,
            "type": self.type.value,
            "payload": json.dumps(self.payload),
            "attempts": str(self.attempts),
            "max_attempts": str(self.max_attempts),
            "backoff_kind": self.backoff.kind,
            "backoff_delay_ms": str(self.backoff.delay_ms),
            "state": self.state.value,
            "created_at": str(self.created_at),
        }
        for name in ("processed_at", "finished_at", "last_error", "token"):
            value = getattr(self, name)
            if value is not None:
                fields[name] = str(value)
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "Job":
        """Rebuild a job from its hash representation."""

        def _optional_int(name: str) -> int | None:
            value = fields.get(name)
            return int(value) if value not in (None, "") else None

        return cls(
            id=fields["id"],
            channel=fields["channel"],
            type=JobType(fields["type"]),
            payload=json.loads(fields.get("payload") or "{}"),
            attempts=int(fields.get("attempts", 0)),
            max_attempts=int(fields["max_attempts"]),
            backoff=BackoffPolicy(
                kind=fields.get("backoff_kind", "exponential"),
                delay_ms=int(fields.get("backoff_delay_ms", 0)),
            ),
            state=JobState(fields.get("state", JobState.WAITING.value)),
            created_at=int(fields.get("created_at", 0)),
            processed_at=_optional_int("processed_at"),
            finished_at=_optional_int("finished_at"),
            last_error=fields.get("last_error"),
            token=fields.get("token"),
        )


@dataclass
class ChannelStats:
    """Job counts per state for one channel."""

    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
