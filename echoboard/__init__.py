"""EchoBoard notification pipeline - durable job queue, workers and lifecycle guard."""

__version__ = "0.1.0"
