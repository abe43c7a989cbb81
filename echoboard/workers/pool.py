"""
Worker pool - concurrent executors draining each channel.

Each channel gets exactly ``concurrency`` executor tasks. An executor
loops: dequeue, run the channel's handler under the job timeout, then
ack on success or nack on any exception. A failing or slow handler only
occupies its own slot; nothing a handler raises can end the loop.

Transport errors around dequeue/ack/nack are logged and the executor
backs off with jitter before trying again. A job whose ack or nack was
lost stays active until stalled-job recovery returns it to waiting.
"""

import asyncio
import time

import structlog

from echoboard.observability.logging import bind_job_context, clear_job_context
from echoboard.observability.metrics import get_metrics
from echoboard.queues.backoff import ExponentialBackoff
from echoboard.queues.config import ChannelConfig
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import Job
from echoboard.workers.handlers import JobHandler

logger = structlog.get_logger(__name__)


class ChannelWorker:
    """
    Fixed-size set of executors for one channel.

    Usage:
        worker = ChannelWorker(queue, queue.config("email"), handler)
        worker.start()
        ...
        await worker.stop(grace=30.0)
    """

    def __init__(
        self,
        queue: DurableQueue,
        config: ChannelConfig,
        handler: JobHandler,
        poll_interval: float = 1.0,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 30.0,
    ):
        """
        Initialize the channel worker.

        Args:
            queue: Queue to drain
            config: Channel configuration (concurrency, job timeout)
            handler: Async callable run once per claimed job
            poll_interval: Seconds an idle executor waits before re-polling
            backoff_base_delay: First delay after a transport error
            backoff_max_delay: Cap on the transport error delay
        """
        self._queue = queue
        self._config = config
        self._handler = handler
        self._poll_interval = poll_interval
        self._backoff_base_delay = backoff_base_delay
        self._backoff_max_delay = backoff_max_delay

        self._tasks: list[asyncio.Task] = []
        self._stop = asyncio.Event()
        self._in_flight = 0

    @property
    def channel(self) -> str:
        return self._config.name

    @property
    def concurrency(self) -> int:
        return self._config.concurrency

    @property
    def in_flight(self) -> int:
        """Number of handlers currently executing."""
        return self._in_flight

    @property
    def running(self) -> bool:
        """True while every executor is alive and no stop was requested."""
        return (
            bool(self._tasks)
            and not self._stop.is_set()
            and all(not task.done() for task in self._tasks)
        )

    def start(self) -> None:
        if self._tasks:
            raise RuntimeError(f"Worker for channel {self.channel} already started")
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(
                self._executor_loop(index),
                name=f"worker:{self.channel}:{index}",
            )
            for index in range(self._config.concurrency)
        ]
        logger.info(
            "Worker started",
            channel=self.channel,
            concurrency=self._config.concurrency,
        )

    async def stop(self, grace: float | None = None) -> int:
        """
        Stop claiming new jobs and wait for in-flight handlers.

        Handlers still running after ``grace`` seconds are cancelled; their
        jobs stay active and are recovered as stalled on a later start.

        Returns:
            Number of executors that had to be cancelled
        """
        if not self._tasks:
            return 0

        self._stop.set()
        self._queue.wake(self.channel)

        _, pending = await asyncio.wait(self._tasks, timeout=grace)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "Abandoned in-flight jobs after grace period",
                channel=self.channel,
                executors=len(pending),
            )

        for task in self._tasks:
            if task.done() and not task.cancelled() and task.exception():
                logger.error(
                    "Executor exited with error",
                    channel=self.channel,
                    task=task.get_name(),
                    error=str(task.exception()),
                )

        self._tasks = []
        logger.info("Worker stopped", channel=self.channel)
        return len(pending)

    async def _executor_loop(self, index: int) -> None:
        backoff = ExponentialBackoff(
            base_delay=self._backoff_base_delay,
            max_delay=self._backoff_max_delay,
        )

        while not self._stop.is_set():
            try:
                job = await self._queue.dequeue(
                    self.channel, timeout=self._poll_interval, stop=self._stop
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Dequeue failed, backing off",
                    channel=self.channel,
                    executor=index,
                    consecutive_failures=backoff.attempt + 1,
                    error=str(e),
                )
                await backoff.sleep(self._stop)
                continue

            backoff.reset()
            if job is None:
                continue
            await self._execute(job)

    async def _execute(self, job: Job) -> None:
        bind_job_context(job.channel, job.id, job.type.value, attempt=job.attempts + 1)
        self._in_flight += 1
        start = time.monotonic()
        error: str | None = None

        try:
            await asyncio.wait_for(
                self._handler(job), timeout=self._config.job_timeout_seconds
            )
        except asyncio.CancelledError:
            logger.warning("Job abandoned during shutdown")
            raise
        except asyncio.TimeoutError:
            error = f"Handler timed out after {self._config.job_timeout_seconds}s"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        finally:
            self._in_flight -= 1
            get_metrics().job_duration.labels(channel=job.channel).observe(
                time.monotonic() - start
            )

        try:
            if error is None:
                await self._queue.ack(job)
            else:
                await self._queue.nack(job, error)
        except Exception as e:
            logger.error(
                "Could not record job outcome, job will be recovered as stalled",
                succeeded=error is None,
                error=str(e),
            )
        finally:
            clear_job_context()


class WorkerPool:
    """
    One ChannelWorker per configured channel, with identical rebuilds.

    The pool keeps its handler bindings and channel configurations, so
    stop() followed by start() recreates exactly the same executors.

    Usage:
        pool = WorkerPool(queue, {"email": notify, "scheduled": maintenance})
        await pool.start()
        pool.running()  # {"email": True, "scheduled": True}
        await pool.stop(grace=30.0)
    """

    def __init__(
        self,
        queue: DurableQueue,
        handlers: dict[str, JobHandler],
        poll_interval: float = 1.0,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 30.0,
    ):
        unknown = set(handlers) - set(queue.channels)
        if unknown:
            raise ValueError(f"Handlers registered for unknown channels: {sorted(unknown)}")

        self._queue = queue
        self._handlers = dict(handlers)
        self._poll_interval = poll_interval
        self._backoff_base_delay = backoff_base_delay
        self._backoff_max_delay = backoff_max_delay
        self._workers: dict[str, ChannelWorker] = {}

    @property
    def channels(self) -> list[str]:
        return list(self._handlers)

    def worker(self, channel: str) -> ChannelWorker | None:
        return self._workers.get(channel)

    async def start(self) -> None:
        """Recover stalled jobs, then start executors for every channel."""
        if self._workers:
            logger.warning("Worker pool already started")
            return

        for channel, handler in self._handlers.items():
            try:
                await self._queue.recover_stalled(channel)
            except Exception as e:
                logger.warning(
                    "Stalled job recovery failed at startup",
                    channel=channel,
                    error=str(e),
                )

            worker = ChannelWorker(
                self._queue,
                self._queue.config(channel),
                handler,
                poll_interval=self._poll_interval,
                backoff_base_delay=self._backoff_base_delay,
                backoff_max_delay=self._backoff_max_delay,
            )
            worker.start()
            self._workers[channel] = worker

    async def stop(self, grace: float | None = None) -> None:
        """Stop all channels concurrently, waiting up to ``grace`` seconds."""
        if not self._workers:
            return
        workers = list(self._workers.values())
        self._workers = {}
        await asyncio.gather(*(w.stop(grace) for w in workers))

    def is_running(self, channel: str) -> bool:
        worker = self._workers.get(channel)
        return worker is not None and worker.running

    def running(self) -> dict[str, bool]:
        return {channel: self.is_running(channel) for channel in self._handlers}
