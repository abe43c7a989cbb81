"""
Durable job queue with per-channel retry, dead-letter and inspection.

Classes:
    DurableQueue: Channel-aware facade used by producers and workers
    ChannelConfig: Concurrency, retry and retention settings per channel
    BaseJobStore: Abstract transport contract
    RedisJobStore: Redis-backed store with Lua atomic claim
    InMemoryJobStore: Process-local store for development and tests

Example:
    from echoboard.queues import DurableQueue, InMemoryJobStore, ChannelConfig

    queue = DurableQueue(
        InMemoryJobStore(),
        {"email": ChannelConfig(name="email", concurrency=5)},
    )
    await queue.connect()
    job_id = await queue.enqueue("email", "welcome_email", {"to": "a@x.com"})

The fire-and-forget producer lives in echoboard.queues.producer.
"""

from echoboard.queues.base import BaseJobStore
from echoboard.queues.config import ChannelConfig, default_channel_configs
from echoboard.queues.memory_store import InMemoryJobStore
from echoboard.queues.queue import DurableQueue
from echoboard.queues.redis_store import RedisJobStore
from echoboard.queues.schemas import (
    EMAIL_CHANNEL,
    SCHEDULED_CHANNEL,
    BackoffPolicy,
    ChannelStats,
    Job,
    JobOptions,
    JobState,
    JobType,
    NackOutcome,
)

__all__ = [
    "EMAIL_CHANNEL",
    "SCHEDULED_CHANNEL",
    "BackoffPolicy",
    "BaseJobStore",
    "ChannelConfig",
    "ChannelStats",
    "DurableQueue",
    "InMemoryJobStore",
    "Job",
    "JobOptions",
    "JobState",
    "JobType",
    "NackOutcome",
    "RedisJobStore",
    "default_channel_configs",
]
