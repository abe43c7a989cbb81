"""
Durable queue facade over a job store.

DurableQueue is the only interface producers and workers use. It owns
the channel configurations, assigns claim tokens, computes retry delays
from each job's backoff policy, and wakes idle executors when new work
arrives in the same process.
"""

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

import structlog

from echoboard.observability.metrics import get_metrics
from echoboard.queues.base import BaseJobStore
from echoboard.queues.config import ChannelConfig
from echoboard.queues.schemas import (
    ChannelStats,
    Job,
    JobOptions,
    JobState,
    JobType,
    NackOutcome,
    now_ms,
)

logger = structlog.get_logger(__name__)

MAX_ERROR_LENGTH = 1000


class DurableQueue:
    """
    Named channels of jobs with retry, dead-letter and inspection.

    Usage:
        queue = DurableQueue(store, default_channel_configs(settings))
        await queue.connect()

        job_id = await queue.enqueue("email", JobType.WELCOME_EMAIL, payload)

        job = await queue.dequeue("email", timeout=1.0)
        if job:
            try:
                await handle(job)
                await queue.ack(job)
            except Exception as e:
                await queue.nack(job, str(e))
    """

    def __init__(
        self,
        store: BaseJobStore,
        channels: dict[str, ChannelConfig],
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the queue.

        Args:
            store: Transport-specific job store
            channels: Configuration per channel name
            clock: Millisecond wall clock used for delays and leases
        """
        self._store = store
        self._channels = dict(channels)
        self._clock = clock
        self._wakeups: dict[str, asyncio.Event] = {}

    @property
    def channels(self) -> dict[str, ChannelConfig]:
        return dict(self._channels)

    @property
    def store(self) -> BaseJobStore:
        return self._store

    def config(self, channel: str) -> ChannelConfig:
        """Get a channel's configuration, raising ValueError if unknown."""
        try:
            return self._channels[channel]
        except KeyError:
            raise ValueError(f"Unknown channel: {channel}") from None

    def _wakeup(self, channel: str) -> asyncio.Event:
        if channel not in self._wakeups:
            self._wakeups[channel] = asyncio.Event()
        return self._wakeups[channel]

    def wake(self, channel: str | None = None) -> None:
        """Wake executors blocked in dequeue (one channel, or all)."""
        names = [channel] if channel else list(self._channels)
        for name in names:
            self._wakeup(name).set()

    async def connect(self) -> None:
        await self._store.connect()

    async def close(self) -> None:
        self.wake()
        await self._store.close()

    async def reconnect(self) -> None:
        """Drop and recreate the transport connection."""
        await self._store.close()
        await self._store.connect()

    async def ping(self) -> bool:
        return await self._store.ping()

    async def enqueue(
        self,
        channel: str,
        job_type: JobType | str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> str:
        """
        Persist a new job on a channel.

        Args:
            channel: Target channel name
            job_type: Kind of job; must belong to the channel
            payload: Data the handler needs, JSON-serializable
            options: Overrides for attempts, backoff and initial delay

        Returns:
            The assigned job id

        Raises:
            ValueError: Unknown channel or job type on the wrong channel
            QueueError: The store could not persist the job
        """
        config = self.config(channel)
        job_type = JobType(job_type)
        if job_type.channel != channel:
            raise ValueError(
                f"Job type {job_type.value} belongs to channel "
                f"{job_type.channel}, not {channel}"
            )
        options = options or JobOptions()

        job = Job(
            id="",
            channel=channel,
            type=job_type,
            payload=dict(payload),
            max_attempts=options.max_attempts or config.max_attempts,
            backoff=options.backoff or config.backoff,
            created_at=self._clock(),
        )
        stored = await self._store.add(job, delay_ms=options.delay_ms)

        get_metrics().jobs_enqueued.labels(channel=channel, type=job_type.value).inc()
        logger.debug(
            "Job enqueued",
            channel=channel,
            job_id=stored.id,
            job_type=job_type.value,
            delay_ms=options.delay_ms,
        )
        self._wakeup(channel).set()
        return stored.id

    async def _claim(self, channel: str) -> Job | None:
        return await self._store.claim(channel, uuid.uuid4().hex, self._clock())

    async def dequeue(
        self,
        channel: str,
        timeout: float | None = None,
        stop: asyncio.Event | None = None,
    ) -> Job | None:
        """
        Claim at most one job from a channel.

        If nothing is claimable, waits up to ``timeout`` seconds for new
        work in this process (or for delayed jobs to come due) and tries
        once more.

        Args:
            channel: Channel to claim from
            timeout: Seconds to wait when the channel is empty
            stop: When set during the wait, return None without claiming

        Returns:
            The claimed job, or None
        """
        self.config(channel)
        wakeup = self._wakeup(channel)
        wakeup.clear()

        job = await self._claim(channel)
        if job is not None or not timeout:
            return job

        try:
            await asyncio.wait_for(wakeup.wait(), timeout)
        except asyncio.TimeoutError:
            pass

        if stop is not None and stop.is_set():
            return None
        return await self._claim(channel)

    async def ack(self, job: Job) -> bool:
        """
        Mark a claimed job completed.

        Returns:
            False if the claim was stale (the job was already recovered
            and handed elsewhere); nothing is changed in that case
        """
        config = self.config(job.channel)
        acked = await self._store.ack(
            job.channel,
            job.id,
            job.token or "",
            self._clock(),
            config.completed_retention,
        )
        if acked:
            get_metrics().jobs_completed.labels(
                channel=job.channel, type=job.type.value
            ).inc()
            logger.info(
                "Job completed",
                channel=job.channel,
                job_id=job.id,
                job_type=job.type.value,
                attempt=job.attempts + 1,
            )
        else:
            logger.warning("Stale ack ignored", channel=job.channel, job_id=job.id)
        return acked

    async def nack(self, job: Job, error: str) -> NackOutcome:
        """
        Record a failed attempt of a claimed job.

        The job is retried after its backoff delay while attempts remain,
        otherwise moved to failed, where it stays until replayed by hand.
        """
        config = self.config(job.channel)
        attempts_made = job.attempts + 1
        delay_ms = job.backoff.delay_for(attempts_made)

        outcome = await self._store.nack(
            job.channel,
            job.id,
            job.token or "",
            self._clock(),
            error[:MAX_ERROR_LENGTH],
            delay_ms,
            config.failed_retention,
        )

        metrics = get_metrics()
        labels = {"channel": job.channel, "type": job.type.value}
        if outcome == NackOutcome.RETRY:
            metrics.jobs_retried.labels(**labels).inc()
            logger.warning(
                "Job failed, retry scheduled",
                job_id=job.id,
                attempt=attempts_made,
                max_attempts=job.max_attempts,
                retry_in_ms=delay_ms,
                error=error,
                **labels,
            )
        elif outcome == NackOutcome.DEAD_LETTER:
            metrics.jobs_dead_lettered.labels(**labels).inc()
            logger.error(
                "Job failed permanently, moved to failed",
                job_id=job.id,
                attempts=attempts_made,
                error=error,
                **labels,
            )
        else:
            logger.warning("Stale nack ignored", channel=job.channel, job_id=job.id)
        return outcome

    async def stats(self, channel: str) -> ChannelStats:
        """Count jobs per state on a channel."""
        self.config(channel)
        counts = await self._store.counts(channel)
        get_metrics().record_stats(channel, counts.to_dict())
        return counts

    async def recover_stalled(self, channel: str) -> int:
        """Return jobs whose claim outlived the channel's lease to waiting."""
        config = self.config(channel)
        recovered = await self._store.recover_stalled(
            channel, self._clock() - config.stalled_timeout_ms
        )
        if recovered:
            get_metrics().stalled_recovered.labels(channel=channel).inc(recovered)
            logger.warning("Recovered stalled jobs", channel=channel, count=recovered)
            self._wakeup(channel).set()
        return recovered

    async def get_job(self, channel: str, job_id: str) -> Job | None:
        self.config(channel)
        return await self._store.get_job(channel, job_id)

    async def replay_failed(self, channel: str, job_id: str) -> bool:
        """Move a dead-lettered job back to waiting with a fresh attempt budget."""
        self.config(channel)
        replayed = await self._store.replay_failed(channel, job_id)
        if replayed:
            logger.info("Replayed failed job", channel=channel, job_id=job_id)
            self._wakeup(channel).set()
        return replayed

    async def clean(self, channel: str, state: JobState, older_than_ms: int) -> int:
        """Delete retained completed or failed jobs older than a window."""
        self.config(channel)
        return await self._store.clean(channel, state, self._clock() - older_than_ms)

    async def claim_schedule_slot(self, key: str, fire_at: int, ttl_ms: int) -> bool:
        return await self._store.claim_schedule_slot(key, fire_at, ttl_ms)
