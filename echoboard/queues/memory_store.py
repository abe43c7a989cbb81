"""
In-process job store for development and tests.

Mirrors the Redis store's layout (waiting list, delayed schedule, active
leases, bounded completed/failed lists) inside a single event loop. An
asyncio.Lock makes each operation atomic. Nothing survives a restart.
"""

import asyncio
import copy
import logging
from collections import deque
from dataclasses import dataclass, field

from echoboard.errors import QueueError
from echoboard.queues.base import BaseJobStore
from echoboard.queues.schemas import ChannelStats, Job, JobState, NackOutcome

logger = logging.getLogger(__name__)


@dataclass
class _Channel:
    jobs: dict[str, Job] = field(default_factory=dict)
    waiting: deque[str] = field(default_factory=deque)
    delayed: dict[str, int] = field(default_factory=dict)  # id -> ready at
    active: dict[str, int] = field(default_factory=dict)  # id -> claimed at
    completed: deque[str] = field(default_factory=deque)  # newest first
    failed: deque[str] = field(default_factory=deque)  # newest first
    next_id: int = 0


class InMemoryJobStore(BaseJobStore):
    """
    Job store backed by Python containers.

    Usage:
        store = InMemoryJobStore()
        queue = DurableQueue(store, channel_configs)
    """

    def __init__(self) -> None:
        self._channels: dict[str, _Channel] = {}
        self._slots: dict[tuple[str, int], int] = {}
        self._lock = asyncio.Lock()
        self._connected = False

    def _channel(self, name: str) -> _Channel:
        if name not in self._channels:
            self._channels[name] = _Channel()
        return self._channels[name]

    def _require_connection(self) -> None:
        if not self._connected:
            raise QueueError("In-memory store is not connected. Call connect() first.")

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return copy.deepcopy(job)

    async def connect(self) -> None:
        self._connected = True
        logger.debug("In-memory job store connected")

    async def close(self) -> None:
        self._connected = False

    async def ping(self) -> bool:
        return self._connected

    async def add(self, job: Job, delay_ms: int = 0) -> Job:
        self._require_connection()
        async with self._lock:
            channel = self._channel(job.channel)
            channel.next_id += 1
            stored = self._snapshot(job)
            stored.id = str(channel.next_id)
            if delay_ms > 0:
                stored.state = JobState.DELAYED
                channel.delayed[stored.id] = stored.created_at + delay_ms
            else:
                stored.state = JobState.WAITING
                channel.waiting.append(stored.id)
            channel.jobs[stored.id] = stored
            return self._snapshot(stored)

    async def claim(self, channel: str, token: str, now: int) -> Job | None:
        self._require_connection()
        async with self._lock:
            ch = self._channel(channel)

            due = sorted(
                (ready_at, job_id)
                for job_id, ready_at in ch.delayed.items()
                if ready_at <= now
            )
            for _, job_id in due:
                del ch.delayed[job_id]
                ch.waiting.append(job_id)
                ch.jobs[job_id].state = JobState.WAITING

            if not ch.waiting:
                return None

            job_id = ch.waiting.popleft()
            job = ch.jobs[job_id]
            job.state = JobState.ACTIVE
            job.token = token
            job.processed_at = now
            ch.active[job_id] = now
            return self._snapshot(job)

    def _owns(self, ch: _Channel, job_id: str, token: str) -> bool:
        job = ch.jobs.get(job_id)
        return job is not None and job_id in ch.active and job.token == token

    def _retain(self, ch: _Channel, bucket: deque[str], job_id: str, retention: int) -> None:
        bucket.appendleft(job_id)
        while len(bucket) > retention:
            ch.jobs.pop(bucket.pop(), None)

    async def ack(
        self,
        channel: str,
        job_id: str,
        token: str,
        now: int,
        retention: int,
    ) -> bool:
        self._require_connection()
        async with self._lock:
            ch = self._channel(channel)
            if not self._owns(ch, job_id, token):
                return False

            del ch.active[job_id]
            job = ch.jobs[job_id]
            job.state = JobState.COMPLETED
            job.finished_at = now
            job.token = None
            self._retain(ch, ch.completed, job_id, retention)
            return True

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
        self._require_connection()
        async with self._lock:
            ch = self._channel(channel)
            if not self._owns(ch, job_id, token):
                return NackOutcome.STALE

            del ch.active[job_id]
            job = ch.jobs[job_id]
            job.attempts += 1
            job.last_error = error
            job.token = None

            if job.attempts < job.max_attempts:
                job.state = JobState.DELAYED
                ch.delayed[job_id] = now + delay_ms
                return NackOutcome.RETRY

            job.state = JobState.FAILED
            job.finished_at = now
            self._retain(ch, ch.failed, job_id, retention)
            return NackOutcome.DEAD_LETTER

    async def counts(self, channel: str) -> ChannelStats:
        self._require_connection()
        ch = self._channel(channel)
        return ChannelStats(
            waiting=len(ch.waiting),
            active=len(ch.active),
            delayed=len(ch.delayed),
            completed=len(ch.completed),
            failed=len(ch.failed),
        )

    async def recover_stalled(self, channel: str, cutoff: int) -> int:
        self._require_connection()
        async with self._lock:
            ch = self._channel(channel)
            stalled = [
                job_id for job_id, claimed_at in ch.active.items()
                if claimed_at <= cutoff
            ]
            for job_id in stalled:
                del ch.active[job_id]
                job = ch.jobs[job_id]
                job.state = JobState.WAITING
                job.token = None
                ch.waiting.append(job_id)
            return len(stalled)

    async def get_job(self, channel: str, job_id: str) -> Job | None:
        self._require_connection()
        job = self._channel(channel).jobs.get(job_id)
        return self._snapshot(job) if job else None

    async def replay_failed(self, channel: str, job_id: str) -> bool:
        self._require_connection()
        async with self._lock:
            ch = self._channel(channel)
            if job_id not in ch.failed:
                return False
            ch.failed.remove(job_id)
            job = ch.jobs[job_id]
            job.state = JobState.WAITING
            job.attempts = 0
            job.finished_at = None
            ch.waiting.append(job_id)
            return True

    async def clean(self, channel: str, state: JobState, older_than: int) -> int:
        self._require_connection()
        if state not in (JobState.COMPLETED, JobState.FAILED):
            raise ValueError(f"Only completed or failed jobs can be cleaned, got {state}")
        async with self._lock:
            ch = self._channel(channel)
            bucket = ch.completed if state == JobState.COMPLETED else ch.failed
            expired = [
                job_id for job_id in bucket
                if (ch.jobs[job_id].finished_at or 0) < older_than
            ]
            for job_id in expired:
                bucket.remove(job_id)
                del ch.jobs[job_id]
            return len(expired)

    async def claim_schedule_slot(self, key: str, fire_at: int, ttl_ms: int) -> bool:
        self._require_connection()
        async with self._lock:
            self._slots = {
                slot: expires for slot, expires in self._slots.items()
                if expires > fire_at
            }
            if (key, fire_at) in self._slots:
                return False
            self._slots[(key, fire_at)] = fire_at + ttl_ms
            return True
