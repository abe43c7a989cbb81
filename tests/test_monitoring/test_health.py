"""
Tests for the connection health monitor.

Outages are simulated with an in-memory store whose transport can be
switched off, so the full stop/reconnect/restart cycle runs for real.
"""

import asyncio

import pytest

from echoboard.monitoring.health import HealthMonitor, WorkerPoolHealth
from echoboard.queues.memory_store import InMemoryJobStore
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import EMAIL_CHANNEL, SCHEDULED_CHANNEL, JobType
from echoboard.workers.pool import WorkerPool


class ErroringJobStore(InMemoryJobStore):
    """Store whose ping raises or hangs instead of answering."""

    def __init__(self) -> None:
        super().__init__()
        self.error: Exception | None = None
        self.hang = False

    async def ping(self) -> bool:
        if self.hang:
            await asyncio.sleep(10)
        if self.error is not None:
            raise self.error
        return await super().ping()


def _monitor(queue, pool, **overrides) -> HealthMonitor:
    options = dict(
        interval=3600,
        probe_timeout=0.5,
        failure_threshold=3,
        reconnect_cooldown=0,
        shutdown_grace=1.0,
    )
    options.update(overrides)
    return HealthMonitor(queue, pool, **options)


def _pool(queue, handled: list[str]) -> WorkerPool:
    async def handler(job):
        handled.append(job.id)

    return WorkerPool(
        queue,
        {EMAIL_CHANNEL: handler, SCHEDULED_CHANNEL: handler},
        poll_interval=0.02,
        backoff_base_delay=0.01,
        backoff_max_delay=0.05,
    )


class TestWorkerPoolHealth:
    def test_status(self):
        assert WorkerPoolHealth().status == "degraded"
        assert WorkerPoolHealth(connected=True, workers_running={"email": True}).status == "healthy"
        assert WorkerPoolHealth(connected=True, workers_running={"email": False}).status == "degraded"
        assert WorkerPoolHealth(reconnecting=True).status == "reconnecting"

    def test_to_dict_includes_status(self):
        data = WorkerPoolHealth(connected=True, workers_running={"email": True}).to_dict()
        assert data["status"] == "healthy"
        assert data["workers_running"] == {"email": True}


class TestHealthMonitor:
    """Tests for probing and automatic reconnection."""

    @pytest.mark.asyncio
    async def test_healthy_tick(self, queue):
        await queue.connect()
        pool = _pool(queue, [])
        await pool.start()
        monitor = _monitor(queue, pool)
        try:
            health = await monitor.tick()
        finally:
            await pool.stop(grace=1.0)

        assert health.connected is True
        assert health.workers_running == {EMAIL_CHANNEL: True, SCHEDULED_CHANNEL: True}
        assert health.status == "healthy"
        assert health.probe_latency_ms is not None
        assert health.reconnects == 0

    @pytest.mark.asyncio
    async def test_outage_and_recovery(self, flaky_store, channel_configs, until):
        queue = DurableQueue(flaky_store, channel_configs)
        await queue.connect()
        handled: list[str] = []
        pool = _pool(queue, handled)
        await pool.start()
        monitor = _monitor(queue, pool)

        try:
            flaky_store.down = True
            health = await monitor.tick()

            assert health.connected is False
            assert health.workers_running == {EMAIL_CHANNEL: False, SCHEDULED_CHANNEL: False}
            assert health.reconnecting is False
            assert health.reconnects == 1
            assert health.last_error == "Connection refused"

            flaky_store.down = False
            health = await monitor.tick()

            assert health.connected is True
            assert health.workers_running == {EMAIL_CHANNEL: True, SCHEDULED_CHANNEL: True}
            assert health.consecutive_failures == 0
            assert health.reconnects == 2
            assert health.status == "healthy"

            job_id = await queue.enqueue(EMAIL_CHANNEL, JobType.WELCOME_EMAIL, {"to": "a@x.com"})
            await until(lambda: handled == [job_id])
            await asyncio.sleep(0.05)
            assert handled == [job_id]
        finally:
            await pool.stop(grace=1.0)

    @pytest.mark.asyncio
    async def test_jobs_queued_before_outage_processed_once(self, flaky_store, channel_configs, until):
        queue = DurableQueue(flaky_store, channel_configs)
        await queue.connect()
        job_ids = [
            await queue.enqueue(EMAIL_CHANNEL, JobType.WELCOME_EMAIL, {"to": f"u{i}@x.com"})
            for i in range(5)
        ]
        handled: list[str] = []
        pool = _pool(queue, handled)
        monitor = _monitor(queue, pool)

        # Transport drops before any executor claims the backlog
        flaky_store.down = True
        await pool.start()
        try:
            health = await monitor.tick()
            assert health.connected is False
            await asyncio.sleep(0.05)
            assert handled == []

            flaky_store.down = False
            health = await monitor.tick()
            assert health.status == "healthy"

            await until(lambda: len(handled) >= len(job_ids))
            await asyncio.sleep(0.1)
            stats = await queue.stats(EMAIL_CHANNEL)
        finally:
            await pool.stop(grace=1.0)

        assert sorted(handled, key=int) == sorted(job_ids, key=int)
        assert len(handled) == len(set(handled))
        assert stats.completed == len(job_ids)
        assert stats.waiting == 0
        assert stats.active == 0

    @pytest.mark.asyncio
    async def test_errored_probes_force_reconnect_at_threshold(self, channel_configs):
        store = ErroringJobStore()
        queue = DurableQueue(store, channel_configs)
        await queue.connect()
        pool = _pool(queue, [])
        await pool.start()
        monitor = _monitor(queue, pool, failure_threshold=2)

        try:
            store.error = RuntimeError("protocol error")
            health = await monitor.tick()
            assert health.consecutive_failures == 1
            assert health.reconnects == 0
            assert health.connected is False
            assert health.last_error == "protocol error"

            store.error = None
            health = await monitor.tick()
            assert health.status == "healthy"
            assert health.consecutive_failures == 0

            store.error = RuntimeError("protocol error")
            await monitor.tick()
            store.error = None
            await monitor.tick()
            store.error = RuntimeError("protocol error")
            await monitor.tick()
            health = await monitor.tick()
            assert health.reconnects == 1
        finally:
            await pool.stop(grace=1.0)

    @pytest.mark.asyncio
    async def test_probe_timeout_counts_as_failure(self, channel_configs):
        store = ErroringJobStore()
        queue = DurableQueue(store, channel_configs)
        await queue.connect()
        pool = _pool(queue, [])
        monitor = _monitor(queue, pool, probe_timeout=0.05)

        store.hang = True
        health = await monitor.tick()

        assert health.connected is False
        assert health.consecutive_failures == 1
        assert health.last_error == "TimeoutError"

    @pytest.mark.asyncio
    async def test_stopped_workers_trigger_rebuild(self, queue):
        await queue.connect()
        pool = _pool(queue, [])
        await pool.start()
        monitor = _monitor(queue, pool)

        try:
            await pool.worker(EMAIL_CHANNEL).stop(grace=1.0)
            assert pool.running()[EMAIL_CHANNEL] is False

            health = await monitor.tick()

            assert health.reconnects == 1
            assert health.workers_running == {EMAIL_CHANNEL: True, SCHEDULED_CHANNEL: True}
            assert pool.running() == {EMAIL_CHANNEL: True, SCHEDULED_CHANNEL: True}
        finally:
            await pool.stop(grace=1.0)

    @pytest.mark.asyncio
    async def test_reconnect_is_single_flight(self, queue):
        await queue.connect()
        pool = _pool(queue, [])
        await pool.start()
        monitor = _monitor(queue, pool, reconnect_cooldown=0.1)

        try:
            results = await asyncio.gather(
                monitor.reconnect(reason="first"),
                monitor.reconnect(reason="second"),
            )
        finally:
            await pool.stop(grace=1.0)

        assert sorted(results) == [False, True]
        assert monitor.health.reconnects == 1
        assert monitor.health.reconnecting is False

    @pytest.mark.asyncio
    async def test_start_probes_immediately(self, queue):
        await queue.connect()
        pool = _pool(queue, [])
        await pool.start()
        monitor = _monitor(queue, pool)

        try:
            health = await monitor.start()
            assert monitor.running
            assert health.status == "healthy"
        finally:
            await monitor.stop()
            await pool.stop(grace=1.0)

        assert not monitor.running

    def test_rejects_zero_threshold(self, queue):
        with pytest.raises(ValueError):
            HealthMonitor(queue, _pool(queue, []), failure_threshold=0)
