"""
Abstract transport contract for durable job storage.

A store persists jobs per channel, indexed by state, and provides the
atomic operations the DurableQueue builds on:
- claim: move one due job to active under a fresh claim token
- ack / nack: resolve a claimed job, verifying the token
- recover_stalled: return abandoned active jobs to waiting
- counts, replay, clean: inspection and maintenance

Concrete stores: RedisJobStore (production) and InMemoryJobStore
(development and tests).
"""

from abc import ABC, abstractmethod
from types import TracebackType

from echoboard.queues.schemas import ChannelStats, Job, JobState, NackOutcome


class BaseJobStore(ABC):
    """
    Abstract base class for job stores.

    Implementations must make claim, ack and nack atomic with respect to
    each other, so that a job is never held by two claims at once.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the transport connection."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the transport answers, False otherwise."""
        ...

    @abstractmethod
    async def add(self, job: Job, delay_ms: int = 0) -> Job:
        """
        Persist a new job and assign its id.

        Args:
            job: Job with an empty id
            delay_ms: Hold the job in delayed for this long before it
                becomes claimable

        Returns:
            The stored job with id and state set
        """
        ...

    @abstractmethod
    async def claim(self, channel: str, token: str, now: int) -> Job | None:
        """
        Promote due delayed jobs, then claim the oldest waiting job.

        Args:
            channel: Channel to claim from
            token: Claim token recorded on the job
            now: Current time in milliseconds

        Returns:
            The claimed job in active state, or None if nothing is waiting
        """
        ...

    @abstractmethod
    async def ack(
        self,
        channel: str,
        job_id: str,
        token: str,
        now: int,
        retention: int,
    ) -> bool:
        """
        Mark a claimed job completed.

        Returns:
            False if the token no longer matches (stale claim)
        """
        ...

    @abstractmethod
    async def nack(
        self,
        channel: str,
        job_id: str,
        token: str,
        now: int,
        error: str,
        delay_ms: int,
        retention: int,
    ) -> NackOutcome:
        """
        Record a failed attempt; schedule a retry or dead-letter the job.

        Args:
            delay_ms: Delay before the retry, used only if attempts remain
            retention: Number of failed jobs to keep
        """
        ...

    @abstractmethod
    async def counts(self, channel: str) -> ChannelStats:
        """Count jobs per state."""
        ...

    @abstractmethod
    async def recover_stalled(self, channel: str, cutoff: int) -> int:
        """
        Return active jobs claimed at or before ``cutoff`` to waiting.

        Returns:
            Number of jobs recovered
        """
        ...

    @abstractmethod
    async def get_job(self, channel: str, job_id: str) -> Job | None:
        """Fetch a job by id."""
        ...

    @abstractmethod
    async def replay_failed(self, channel: str, job_id: str) -> bool:
        """
        Move a dead-lettered job back to waiting with attempts reset.

        Returns:
            False if the job is not in failed
        """
        ...

    @abstractmethod
    async def clean(self, channel: str, state: JobState, older_than: int) -> int:
        """
        Delete retained completed or failed jobs finished before a time.

        Returns:
            Number of jobs deleted
        """
        ...

    @abstractmethod
    async def claim_schedule_slot(self, key: str, fire_at: int, ttl_ms: int) -> bool:
        """
        Reserve one firing of a recurring schedule.

        Returns:
            True for exactly one caller per (key, fire_at)
        """
        ...

    async def __aenter__(self) -> "BaseJobStore":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
