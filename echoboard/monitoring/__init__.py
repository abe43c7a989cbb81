"""Transport health monitoring and worker pool reconnection."""

from echoboard.monitoring.health import HealthMonitor, WorkerPoolHealth

__all__ = ["HealthMonitor", "WorkerPoolHealth"]
