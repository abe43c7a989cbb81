"""
Command-line interface for the EchoBoard notification pipeline.

Usage:
    echoboard worker             # Run workers, health monitor and reminder schedule
    echoboard enqueue welcome_email --to a@x.com --data userName=Ada
    echoboard stats              # Job counts per channel
    echoboard health             # Probe the queue transport
    echoboard trigger-reminder   # Enqueue a one-off reminder broadcast
    echoboard replay email 42    # Move a failed job back to waiting
"""

import asyncio
import os
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, NoReturn

import click

from echoboard.config.settings import get_settings
from echoboard.errors import ConfigurationError, QueueError
from echoboard.observability.logging import setup_logging
from echoboard.observability.metrics import get_metrics
from echoboard.queues.config import default_channel_configs
from echoboard.queues.queue import DurableQueue
from echoboard.queues.schemas import SCHEDULED_JOB_TYPES, JobType


@asynccontextmanager
async def _connected_queue() -> AsyncIterator[DurableQueue]:
    """Queue connected to the configured backend, closed on exit."""
    from echoboard.service import create_job_store

    settings = get_settings()
    queue = DurableQueue(create_job_store(settings), default_channel_configs(settings))
    await queue.connect()
    try:
        yield queue
    finally:
        await queue.close()


def _fail(message: str) -> NoReturn:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(1)


def _parse_data(pairs: tuple[str, ...]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--data")
        data[key] = value
    return data


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging with call sites")
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """EchoBoard - notification queue workers and tools."""
    if debug:
        os.environ["DEBUG"] = "true"
        get_settings.cache_clear()

    service = f"echoboard-{ctx.invoked_subcommand}" if ctx.invoked_subcommand else "echoboard"
    setup_logging(service=service)


@main.command()
@click.option("--mock-mail", is_flag=True, help="Record emails instead of sending them")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def worker(mock_mail: bool, metrics: bool) -> None:
    """Run the worker pool, health monitor and reminder schedule."""
    from echoboard.service import NotificationService

    settings = get_settings()
    try:
        settings.validate_worker_config(use_mock_mail=mock_mail)
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}")

    async def run():
        service = NotificationService(settings, use_mock_mail=mock_mail)

        if metrics:
            get_metrics().start_server()

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.run()

    asyncio.run(run())


@main.command()
@click.argument("job_type", type=click.Choice([t.value for t in JobType]))
@click.option("--to", "to", default=None, help="Recipient address (notification jobs)")
@click.option("--data", "data", multiple=True, help="Template value as KEY=VALUE (repeatable)")
def enqueue(job_type: str, to: str | None, data: tuple[str, ...]) -> None:
    """Enqueue a single job and print its id."""
    kind = JobType(job_type)
    values = _parse_data(data)

    if kind in SCHEDULED_JOB_TYPES:
        payload = values
    else:
        if not to:
            raise click.UsageError(f"--to is required for {kind.value} jobs")
        payload = {"to": to, "data": values}

    async def run():
        try:
            async with _connected_queue() as queue:
                job_id = await queue.enqueue(kind.channel, kind, payload)
        except QueueError as e:
            _fail(f"Enqueue failed: {e}")
        click.echo(f"Enqueued {kind.value} on {kind.channel}: job {job_id}")

    asyncio.run(run())


@main.command()
def stats() -> None:
    """Show job counts per channel."""

    async def run():
        try:
            async with _connected_queue() as queue:
                counts = {channel: await queue.stats(channel) for channel in queue.channels}
        except QueueError as e:
            _fail(f"Queue unavailable: {e}")

        click.echo("\nQueue Stats:")
        click.echo("-" * 60)
        click.echo(f"  {'channel':<12}{'waiting':>9}{'active':>9}{'delayed':>9}{'completed':>11}{'failed':>8}")
        for channel, c in counts.items():
            click.echo(
                f"  {channel:<12}{c.waiting:>9}{c.active:>9}{c.delayed:>9}{c.completed:>11}{c.failed:>8}"
            )
        click.echo("-" * 60)

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check the queue transport and mail configuration."""

    async def check():
        settings = get_settings()
        results: dict[str, bool] = {}

        try:
            async with _connected_queue() as queue:
                results["queue"] = await queue.ping()
        except QueueError:
            results["queue"] = False

        results["mail_configured"] = settings.mail_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
        click.echo("-" * 40)

        if results["queue"]:
            click.echo(click.style("Queue transport healthy!", fg="green"))
            sys.exit(0)
        click.echo(click.style("Queue transport unreachable!", fg="red"))
        sys.exit(1)

    asyncio.run(check())


@main.command("trigger-reminder")
def trigger_reminder() -> None:
    """Enqueue a one-off reminder broadcast."""
    from echoboard.workers.handlers import trigger_reminder_job

    async def run():
        try:
            async with _connected_queue() as queue:
                job_id = await trigger_reminder_job(queue)
        except QueueError as e:
            _fail(f"Enqueue failed: {e}")
        click.echo(f"Reminder job triggered: job {job_id}")

    asyncio.run(run())


@main.command()
@click.argument("channel")
@click.argument("job_id")
def replay(channel: str, job_id: str) -> None:
    """Move a dead-lettered job back to waiting with a fresh attempt budget."""

    async def run():
        try:
            async with _connected_queue() as queue:
                if channel not in queue.channels:
                    _fail(f"Unknown channel: {channel}")
                replayed = await queue.replay_failed(channel, job_id)
        except QueueError as e:
            _fail(f"Queue unavailable: {e}")

        if not replayed:
            _fail(f"Job {job_id} is not in the failed list of {channel}")
        click.echo(f"Job {job_id} on {channel} moved back to waiting")

    asyncio.run(run())


if __name__ == "__main__":
    main()
