"""
Tests for RedisJobStore with a mocked Redis client.

Tests verify that the store correctly:
- Refuses to operate before connect()
- Passes keys and arguments to its Lua scripts
- Parses script replies into jobs and outcomes
- Wraps Redis errors in QueueError
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis.asyncio as redis

from echoboard.errors import QueueError
from echoboard.queues.redis_store import RedisJobStore
from echoboard.queues.schemas import (
    EMAIL_CHANNEL,
    BackoffPolicy,
    ChannelStats,
    Job,
    JobState,
    JobType,
    NackOutcome,
)


def _job(**overrides) -> Job:
    values = dict(
        id="",
        channel=EMAIL_CHANNEL,
        type=JobType.WELCOME_EMAIL,
        payload={"to": "a@x.com"},
        max_attempts=3,
        backoff=BackoffPolicy(),
        created_at=1000,
    )
    values.update(overrides)
    return Job(**values)


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.incr = AsyncMock(return_value=42)
    client.hgetall = AsyncMock(return_value={})
    client.set = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.register_script = MagicMock(side_effect=lambda _: AsyncMock())

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    client.pipeline = MagicMock(return_value=pipe)
    return client


@pytest.fixture
def store(mock_redis):
    store = RedisJobStore("redis://localhost:6379/1", prefix="test")
    with patch("echoboard.queues.redis_store.redis.from_url", return_value=mock_redis):
        yield store


class TestConnection:
    """Tests for connect/close/ping."""

    @pytest.mark.asyncio
    async def test_operations_require_connect(self, store):
        with pytest.raises(QueueError, match="connect"):
            await store.claim(EMAIL_CHANNEL, "tok", 0)

    @pytest.mark.asyncio
    async def test_connect_registers_scripts(self, store, mock_redis):
        await store.connect()
        assert mock_redis.register_script.call_count == 6

    @pytest.mark.asyncio
    async def test_connect_bounds_command_replies(self, mock_redis):
        store = RedisJobStore("redis://localhost:6379/1", connect_timeout=3.0, command_timeout=7.5)
        with patch(
            "echoboard.queues.redis_store.redis.from_url", return_value=mock_redis
        ) as from_url:
            await store.connect()

        assert from_url.call_args.kwargs["socket_connect_timeout"] == 3.0
        assert from_url.call_args.kwargs["socket_timeout"] == 7.5

    @pytest.mark.asyncio
    async def test_close_disconnects(self, store, mock_redis):
        await store.connect()
        await store.close()

        mock_redis.aclose.assert_awaited_once()
        with pytest.raises(QueueError):
            await store.ack(EMAIL_CHANNEL, "1", "tok", 0, 10)

    @pytest.mark.asyncio
    async def test_ping_false_when_not_connected(self, store):
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_ping_false_on_error(self, store, mock_redis):
        await store.connect()
        mock_redis.ping.side_effect = redis.ConnectionError("refused")
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_ping_true(self, store):
        await store.connect()
        assert await store.ping() is True


class TestAdd:
    """Tests for persisting new jobs."""

    @pytest.mark.asyncio
    async def test_add_waiting_job(self, store, mock_redis):
        await store.connect()
        pipe = mock_redis.pipeline.return_value

        stored = await store.add(_job())

        assert stored.id == "42"
        assert stored.state == JobState.WAITING
        mock_redis.incr.assert_awaited_once_with("test:email:id")
        pipe.hset.assert_called_once()
        assert pipe.hset.call_args.args[0] == "test:email:job:42"
        pipe.rpush.assert_called_once_with("test:email:waiting", "42")
        pipe.zadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_add_delayed_job(self, store, mock_redis):
        await store.connect()
        pipe = mock_redis.pipeline.return_value

        stored = await store.add(_job(), delay_ms=500)

        assert stored.state == JobState.DELAYED
        pipe.zadd.assert_called_once_with("test:email:delayed", {"42": 1500})

    @pytest.mark.asyncio
    async def test_add_wraps_redis_error(self, store, mock_redis):
        await store.connect()
        mock_redis.incr.side_effect = redis.ConnectionError("refused")

        with pytest.raises(QueueError, match="Failed to add"):
            await store.add(_job())


class TestScripts:
    """Tests for Lua-backed operations."""

    @pytest.mark.asyncio
    async def test_claim_parses_flat_hash(self, store):
        await store.connect()
        fields = _job(id="7", state=JobState.ACTIVE, token="tok").to_fields()
        store._claim.return_value = [item for pair in fields.items() for item in pair]

        job = await store.claim(EMAIL_CHANNEL, "tok", 2000)

        assert job.id == "7"
        assert job.token == "tok"
        assert job.state == JobState.ACTIVE
        call = store._claim.call_args
        assert call.kwargs["keys"] == [
            "test:email:waiting",
            "test:email:delayed",
            "test:email:active",
        ]
        assert call.kwargs["args"] == ["test:email:job:", 2000, "tok"]

    @pytest.mark.asyncio
    async def test_claim_empty(self, store):
        await store.connect()
        store._claim.return_value = None
        assert await store.claim(EMAIL_CHANNEL, "tok", 0) is None

    @pytest.mark.asyncio
    async def test_claim_wraps_redis_error(self, store):
        await store.connect()
        store._claim.side_effect = redis.ConnectionError("refused")
        with pytest.raises(QueueError, match="Failed to claim"):
            await store.claim(EMAIL_CHANNEL, "tok", 0)

    @pytest.mark.asyncio
    async def test_ack_result(self, store):
        await store.connect()
        store._ack.return_value = 1
        assert await store.ack(EMAIL_CHANNEL, "7", "tok", 0, 10) is True
        store._ack.return_value = 0
        assert await store.ack(EMAIL_CHANNEL, "7", "stale", 0, 10) is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply,outcome",
        [(1, NackOutcome.RETRY), (0, NackOutcome.DEAD_LETTER), (-1, NackOutcome.STALE)],
    )
    async def test_nack_outcomes(self, store, reply, outcome):
        await store.connect()
        store._nack.return_value = reply

        assert await store.nack(EMAIL_CHANNEL, "7", "tok", 100, "boom", 2000, 1000) == outcome
        args = store._nack.call_args.kwargs["args"]
        assert args[1:] == ["7", "tok", 100, "boom", 2000, 1000]

    @pytest.mark.asyncio
    async def test_recover_stalled(self, store):
        await store.connect()
        store._recover.return_value = 3
        assert await store.recover_stalled(EMAIL_CHANNEL, 5000) == 3

    @pytest.mark.asyncio
    async def test_replay_failed(self, store):
        await store.connect()
        store._replay.return_value = 1
        assert await store.replay_failed(EMAIL_CHANNEL, "7") is True

    @pytest.mark.asyncio
    async def test_clean_uses_state_list(self, store):
        await store.connect()
        store._clean.return_value = 2

        assert await store.clean(EMAIL_CHANNEL, JobState.FAILED, 1000) == 2
        assert store._clean.call_args.kwargs["keys"] == ["test:email:failed"]

    @pytest.mark.asyncio
    async def test_clean_rejects_active(self, store):
        await store.connect()
        with pytest.raises(ValueError):
            await store.clean(EMAIL_CHANNEL, JobState.ACTIVE, 1000)


class TestInspection:
    """Tests for counts, job reads and schedule slots."""

    @pytest.mark.asyncio
    async def test_counts(self, store, mock_redis):
        await store.connect()
        mock_redis.pipeline.return_value.execute.return_value = [1, 2, 3, 4, 5]

        assert await store.counts(EMAIL_CHANNEL) == ChannelStats(
            waiting=1, active=2, delayed=3, completed=4, failed=5
        )

    @pytest.mark.asyncio
    async def test_get_missing_job(self, store):
        await store.connect()
        assert await store.get_job(EMAIL_CHANNEL, "404") is None

    @pytest.mark.asyncio
    async def test_schedule_slot_uses_set_nx(self, store, mock_redis):
        await store.connect()

        assert await store.claim_schedule_slot("scheduled:send_reminder_emails:0 9 * * *", 1000, 60_000)
        mock_redis.set.assert_awaited_once_with(
            "test:repeat:scheduled:send_reminder_emails:0 9 * * *:1000",
            "1",
            nx=True,
            px=60_000,
        )

        mock_redis.set.return_value = None
        assert await store.claim_schedule_slot("k", 1000, 60_000) is False
