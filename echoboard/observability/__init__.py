"""Observability layer - logging and metrics."""

from echoboard.observability.logging import setup_logging
from echoboard.observability.metrics import QueueMetrics, get_metrics

__all__ = ["setup_logging", "QueueMetrics", "get_metrics"]
