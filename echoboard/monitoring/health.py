"""
Connection health monitor and reconnector.

The monitor is the only writer of the pipeline's health state. On every
tick it probes the queue transport with a bounded timeout, publishes
queue depths, and returns stalled jobs to waiting. If the transport
reports itself unreachable, or any channel's executors are not running,
it runs a reconnect: stop the pool gracefully, cool down, recreate the
transport connection, and start the pool again with the same handlers.

Probes that error (timeouts, unexpected exceptions) are counted; once
``failure_threshold`` consecutive ticks have failed a reconnect is
forced even though no probe ever returned a clean "disconnected".

Reconnects are single-flight. A failed reconnect is logged and the pool
is restarted anyway; the next tick tries again.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field

import structlog

from echoboard.errors import QueueError
from echoboard.observability.metrics import get_metrics
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import now_ms
from echoboard.workers.pool import WorkerPool

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WorkerPoolHealth:
    """
    Snapshot of transport and worker health.

    Attributes:
        connected: Whether the last probe reached the transport
        workers_running: Per-channel flag, true only while the channel's
            executors are alive and the transport is connected
        last_probe_at: Millisecond timestamp of the last probe, if any
        probe_latency_ms: Round trip of the last successful probe
        consecutive_failures: Ticks in a row whose probe failed
        reconnecting: A reconnect is in progress
        reconnects: Reconnects attempted since the monitor was created
        last_error: Error from the last failed probe or reconnect
    """

    connected: bool = False
    workers_running: dict[str, bool] = field(default_factory=dict)
    last_probe_at: int | None = None
    probe_latency_ms: float | None = None
    consecutive_failures: int = 0
    reconnecting: bool = False
    reconnects: int = 0
    last_error: str | None = None

    @property
    def status(self) -> str:
        """healthy, reconnecting or degraded."""
        if self.reconnecting:
            return "reconnecting"
        if self.connected and self.workers_running and all(self.workers_running.values()):
            return "healthy"
        return "degraded"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status
        return data


class HealthMonitor:
    """
    Periodic liveness probe with automatic pool rebuild.

    Usage:
        monitor = HealthMonitor(queue, pool, interval=30.0)
        await monitor.start()
        monitor.health.workers_running  # {"email": True, "scheduled": True}
        await monitor.stop()
    """

    def __init__(
        self,
        queue: DurableQueue,
        pool: WorkerPool,
        interval: float = 30.0,
        probe_timeout: float = 5.0,
        failure_threshold: int = 3,
        reconnect_cooldown: float = 2.0,
        shutdown_grace: float = 30.0,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize the monitor.

        Args:
            queue: Queue whose transport is probed and reconnected
            pool: Worker pool rebuilt on reconnect
            interval: Seconds between ticks
            probe_timeout: Upper bound in seconds on one probe
            failure_threshold: Consecutive failed ticks that force a reconnect
            reconnect_cooldown: Pause in seconds between stopping the pool
                and recreating the connection
            shutdown_grace: Seconds in-flight handlers get to finish when
                the pool is stopped for a reconnect
            clock: Millisecond wall clock for probe timestamps
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")

        self._queue = queue
        self._pool = pool
        self._interval = interval
        self._probe_timeout = probe_timeout
        self._failure_threshold = failure_threshold
        self._reconnect_cooldown = reconnect_cooldown
        self._shutdown_grace = shutdown_grace
        self._clock = clock

        self._health = WorkerPoolHealth(
            workers_running={channel: False for channel in pool.channels}
        )
        self._reconnect_lock = asyncio.Lock()
        self._task: asyncio.Task | None = None

    @property
    def health(self) -> WorkerPoolHealth:
        """Latest health snapshot. Read-only for everyone but the monitor."""
        return self._health

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _publish(self, **changes) -> WorkerPoolHealth:
        current = {**asdict(self._health), **changes}
        connected = current["connected"]
        current["workers_running"] = {
            channel: connected and self._pool.is_running(channel)
            for channel in self._pool.channels
        }
        self._health = WorkerPoolHealth(**current)
        get_metrics().set_health(self._health.connected, self._health.workers_running)
        return self._health

    async def _probe(self) -> bool:
        start = time.perf_counter()
        connected = await asyncio.wait_for(self._queue.ping(), timeout=self._probe_timeout)
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        self._publish(
            connected=connected,
            last_probe_at=self._clock(),
            probe_latency_ms=latency_ms if connected else None,
        )
        return connected

    async def _refresh_queue(self) -> None:
        for channel in self._pool.channels:
            await self._queue.recover_stalled(channel)
            await self._queue.stats(channel)

    async def tick(self) -> WorkerPoolHealth:
        """Run one probe and repair the pool if needed."""
        try:
            connected = await self._probe()
            if connected:
                await self._refresh_queue()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            failures = self._health.consecutive_failures + 1
            self._publish(
                connected=False,
                last_probe_at=self._clock(),
                consecutive_failures=failures,
                last_error=error,
            )
            logger.warning(
                "Health probe errored",
                consecutive_failures=failures,
                threshold=self._failure_threshold,
                error=error,
            )
            if failures >= self._failure_threshold:
                await self.reconnect(reason="consecutive probe failures")
            return self._health

        if not connected:
            self._publish(
                consecutive_failures=self._health.consecutive_failures + 1,
                last_error="transport unreachable",
            )
            logger.warning("Queue transport disconnected")
            await self.reconnect(reason="transport disconnected")
            return self._health

        stopped = [ch for ch, running in self._pool.running().items() if not running]
        if stopped:
            logger.warning("Workers not running", channels=stopped)
            await self.reconnect(reason="workers not running")
            return self._health

        if self._health.consecutive_failures:
            logger.info("Queue transport healthy again")
        self._publish(consecutive_failures=0, last_error=None)
        logger.debug("Health probe ok", latency_ms=self._health.probe_latency_ms)
        return self._health

    async def reconnect(self, reason: str = "manual") -> bool:
        """
        Stop the pool, recreate the transport connection, restart the pool.

        Returns immediately with False if a reconnect is already running.

        Returns:
            True if the transport answered a probe after reconnecting
        """
        if self._reconnect_lock.locked():
            logger.info("Reconnect already in progress", reason=reason)
            return False

        async with self._reconnect_lock:
            self._publish(reconnecting=True, reconnects=self._health.reconnects + 1)
            logger.warning("Reconnecting workers", reason=reason)
            metrics = get_metrics()
            succeeded = False
            try:
                await self._pool.stop(self._shutdown_grace)
                await asyncio.sleep(self._reconnect_cooldown)
                await self._queue.reconnect()
                if not await asyncio.wait_for(self._queue.ping(), timeout=self._probe_timeout):
                    raise QueueError("Transport still unreachable after reconnect")
                succeeded = True
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = str(e) or type(e).__name__
                metrics.reconnects.labels(outcome="failure").inc()
                self._publish(last_error=error)
                logger.error(
                    "Reconnect failed, will retry on next health check",
                    reason=reason,
                    error=error,
                )
            finally:
                await self._pool.start()
                if succeeded:
                    metrics.reconnects.labels(outcome="success").inc()
                    self._publish(
                        reconnecting=False,
                        connected=True,
                        consecutive_failures=0,
                        last_error=None,
                        last_probe_at=self._clock(),
                    )
                    logger.info("Reconnected successfully", reason=reason)
                else:
                    self._publish(reconnecting=False, connected=False)
            return succeeded

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Health check failed unexpectedly", error=str(e))

    async def start(self) -> WorkerPoolHealth:
        """Probe once immediately, then keep probing every ``interval`` seconds."""
        if self.running:
            return self._health
        health = await self.tick()
        self._task = asyncio.create_task(self._loop(), name="health-monitor")
        logger.info("Health monitor started", interval=self._interval)
        return health

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Health monitor stopped")
