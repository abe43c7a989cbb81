"""
Structured logging for EchoBoard processes.

Every event carries the process identity (``service``, ``environment``)
and, while a job is executing, the job context (``channel``, ``job_id``,
``job_type``, ``attempt``). The Redis store and the mail transport log
through stdlib ``logging``; their records are routed through the same
processor chain so one process emits one format.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from echoboard.config.settings import Settings, get_settings

JOB_CONTEXT_KEYS = ("channel", "job_id", "job_type", "attempt")

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

_handler: logging.Handler | None = None


class ProcessContext:
    """Processor adding the fields that identify this process to every event."""

    def __init__(self, service: str, environment: str):
        self._fields = {"service": service, "environment": environment}

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in self._fields.items():
            event_dict.setdefault(key, value)
        return event_dict


def setup_logging(service: str = "echoboard", settings: Settings | None = None) -> logging.Handler:
    """
    Configure structlog and the stdlib bridge for this process.

    ``DEBUG=true`` forces DEBUG level and adds the call site (module,
    function, line) to each event; otherwise ``LOG_LEVEL`` applies.
    Production renders JSON lines, other environments render for a
    console. Safe to call again: the previous handler is replaced.

    Args:
        service: Process name attached to every event
        settings: Settings to read; defaults to get_settings()

    Returns:
        The stdout handler installed on the root logger
    """
    global _handler

    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        ProcessContext(service, settings.environment),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if level == logging.DEBUG:
        shared_processors.append(
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            )
        )

    if settings.is_production:
        renderers: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
        )
    )

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(level)
    _handler = handler

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler


def bind_job_context(channel: str, job_id: str, job_type: str, attempt: int) -> None:
    """Attach a job's identity to every event logged until clear_job_context()."""
    structlog.contextvars.bind_contextvars(
        channel=channel, job_id=job_id, job_type=job_type, attempt=attempt
    )


def clear_job_context() -> None:
    """Drop the job fields, keeping anything else bound in this context."""
    structlog.contextvars.unbind_contextvars(*JOB_CONTEXT_KEYS)
