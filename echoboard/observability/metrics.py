"""
Prometheus metrics for monitoring the notification pipeline.

Defines and exposes metrics for:
- Job enqueue rates and enqueue failures
- Job outcomes (completed, retried, dead-lettered)
- Handler latency
- Queue depth per state
- Transport and worker health

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from echoboard.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for handler latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class QueueMetrics:
    """
    Prometheus metrics collector for the EchoBoard queue and workers.

    Usage:
        metrics = QueueMetrics()
        metrics.start_server()

        metrics.jobs_enqueued.labels(channel="email", type="welcome_email").inc()
        metrics.job_duration.labels(channel="email").observe(0.4)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Producer
        self.jobs_enqueued = Counter(
            "echoboard_jobs_enqueued_total",
            "Total number of jobs enqueued",
            ["channel", "type"],
        )

        self.enqueue_failures = Counter(
            "echoboard_enqueue_failures_total",
            "Total enqueue attempts that failed and were dropped",
            ["channel"],
        )

        # Job outcomes
        self.jobs_completed = Counter(
            "echoboard_jobs_completed_total",
            "Total jobs whose handler succeeded",
            ["channel", "type"],
        )

        self.jobs_retried = Counter(
            "echoboard_jobs_retried_total",
            "Total failed attempts scheduled for retry",
            ["channel", "type"],
        )

        self.jobs_dead_lettered = Counter(
            "echoboard_jobs_dead_lettered_total",
            "Total jobs moved to failed after exhausting attempts",
            ["channel", "type"],
        )

        self.job_duration = Histogram(
            "echoboard_job_duration_seconds",
            "Time spent in a job handler per attempt",
            ["channel"],
            buckets=LATENCY_BUCKETS,
        )

        # Queue depth
        self.queue_jobs = Gauge(
            "echoboard_queue_jobs",
            "Number of jobs per channel and state",
            ["channel", "state"],
        )

        self.stalled_recovered = Counter(
            "echoboard_stalled_jobs_recovered_total",
            "Total active jobs returned to waiting after their lease expired",
            ["channel"],
        )

        # Health
        self.transport_connected = Gauge(
            "echoboard_transport_connected",
            "Queue transport reachability (1=connected, 0=disconnected)",
        )

        self.workers_running = Gauge(
            "echoboard_workers_running",
            "Worker pool status per channel (1=running, 0=stopped)",
            ["channel"],
        )

        self.reconnects = Counter(
            "echoboard_reconnects_total",
            "Total reconnect attempts",
            ["outcome"],  # success, failure
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_stats(self, channel: str, counts: dict[str, int]) -> None:
        """
        Publish a stats snapshot for one channel.

        Args:
            channel: Channel name
            counts: Mapping of job state to count
        """
        for state, count in counts.items():
            self.queue_jobs.labels(channel=channel, state=state).set(count)

    def set_health(self, connected: bool, workers: dict[str, bool]) -> None:
        """
        Publish the latest health probe result.

        Args:
            connected: Whether the transport answered the probe
            workers: Per-channel worker running flags
        """
        self.transport_connected.set(1 if connected else 0)
        for channel, running in workers.items():
            self.workers_running.labels(channel=channel).set(1 if running else 0)


# Global metrics instance
_metrics: QueueMetrics | None = None


def get_metrics() -> QueueMetrics:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = QueueMetrics()
    return _metrics
