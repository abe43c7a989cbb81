"""Pytest fixtures for EchoBoard tests."""

import asyncio

import pytest

from echoboard.config.settings import Settings
from echoboard.errors import QueueError
from echoboard.lifecycle.guard import FeedbackStatus
from echoboard.lifecycle.store import FeedbackRecord, InMemoryFeedbackStore, UserContact
from echoboard.queues.config import ChannelConfig
from echoboard.queues.memory_store import InMemoryJobStore
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import EMAIL_CHANNEL, SCHEDULED_CHANNEL, BackoffPolicy


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FlakyJobStore(InMemoryJobStore):
    """In-memory store whose transport can be switched off to simulate an outage."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    def _require_connection(self) -> None:
        if self.down:
            raise QueueError("Connection refused")
        super()._require_connection()

    async def connect(self) -> None:
        if self.down:
            raise QueueError("Connection refused")
        await super().connect()

    async def ping(self) -> bool:
        return not self.down and await super().ping()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is truthy or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for fast in-process tests."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        queue_backend="memory",
        redis_url="redis://localhost:6379/1",  # Use DB 1 for tests
        resend_api_key=None,
        verified_email="verified@echoboard.dev",
        email_backoff_ms=10,
        scheduled_backoff_ms=10,
        job_timeout_seconds=2.0,
        stalled_timeout_ms=5_000,
        queue_poll_interval_seconds=0.05,
        enqueue_timeout_seconds=1.0,
        health_check_interval_seconds=3600,
        health_probe_timeout_seconds=0.5,
        reconnect_cooldown_seconds=0,
        shutdown_grace_seconds=1.0,
        worker_backoff_base_delay=0.01,
        worker_backoff_max_delay=0.05,
    )


@pytest.fixture
def channel_configs() -> dict[str, ChannelConfig]:
    """Email and scheduled channels with millisecond backoff."""
    return {
        EMAIL_CHANNEL: ChannelConfig(
            name=EMAIL_CHANNEL,
            concurrency=5,
            max_attempts=3,
            backoff=BackoffPolicy(kind="exponential", delay_ms=10),
            job_timeout_seconds=2.0,
            stalled_timeout_ms=5_000,
        ),
        SCHEDULED_CHANNEL: ChannelConfig(
            name=SCHEDULED_CHANNEL,
            concurrency=2,
            max_attempts=2,
            backoff=BackoffPolicy(kind="fixed", delay_ms=10),
            job_timeout_seconds=2.0,
            stalled_timeout_ms=5_000,
        ),
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def queue(memory_store, channel_configs) -> DurableQueue:
    """Queue on the in-memory store (call ``await queue.connect()`` first)."""
    return DurableQueue(memory_store, channel_configs)


@pytest.fixture
def clocked_queue(memory_store, channel_configs, clock) -> DurableQueue:
    """Queue whose delays and leases follow the hand-driven clock."""
    return DurableQueue(memory_store, channel_configs, clock=clock)


@pytest.fixture
def feedback_store() -> InMemoryFeedbackStore:
    store = InMemoryFeedbackStore()
    store.add_user(UserContact(user_id="u1", email="ada@example.com", name="Ada"))
    store.add_feedback(
        FeedbackRecord(
            id="fb-1",
            title="Dark mode",
            message="Please add a dark theme",
            rating=4,
            user_id="u1",
            status=FeedbackStatus.PENDING,
        )
    )
    return store


@pytest.fixture
def flaky_store() -> FlakyJobStore:
    return FlakyJobStore()


@pytest.fixture
def until():
    """The ``wait_until`` polling helper."""
    return wait_until
