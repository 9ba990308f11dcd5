"""Command-line interface for event-notifications."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from event_notifications import __version__
from event_notifications.app.system import NotificationSystem
from event_notifications.config.exceptions import ConfigurationError, suggest_config_fix
from event_notifications.config.loader import load_app_config
from event_notifications.config.models import AppConfig
from event_notifications.queue.exceptions import QueueError
from event_notifications.queue.models import CleanupPolicy, JobStatus
from event_notifications.types import EmitOptions, EventPriority, ProcessingMode
from event_notifications.utils.logging import configure_logging

DEFAULT_CONFIG_PATH = Path('config/event-notifications.yaml')

logger = logging.getLogger(__name__)


def validate_config_path(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: Path | None,
) -> Path | None:
    """Validate configuration file path.

    Raises:
        click.BadParameter: If the path is a directory or not a YAML file
    """
    if value is None:
        return value

    if value.exists() and value.is_dir():
        raise click.BadParameter('Configuration path must be a file, not a directory')

    valid_extensions = {'.yaml', '.yml'}
    if value.suffix.lower() not in valid_extensions:
        extensions_str = ', '.join(sorted(valid_extensions))
        raise click.BadParameter(
            f'Invalid configuration file extension. Supported extensions: {extensions_str}'
        )

    return value


def validate_log_level(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: str | None,
) -> str | None:
    """Validate and normalize log level."""
    if value is None:
        return value

    normalized_value = value.upper().strip()
    valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
    if normalized_value not in valid_levels:
        raise click.BadParameter(
            f'Invalid log level "{value}". Valid options: {", ".join(sorted(valid_levels))}'
        )

    return normalized_value


def parse_payload(
    ctx: click.Context,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    param: click.Parameter,  # pyright: ignore[reportUnusedParameter] # required by Click callback signature
    value: str,
) -> object:
    """Decode the ``--payload`` JSON document."""
    try:
        return json.loads(value)  # pyright: ignore[reportAny]
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f'Payload is not valid JSON: {exc}') from exc


def _load_config(ctx: click.Context) -> AppConfig:
    """Load configuration and configure logging, converting errors to Click errors."""
    config_path: Path = ctx.obj['config_path']
    try:
        config = load_app_config(config_path)
    except ConfigurationError as exc:
        suggestion = suggest_config_fix(exc)
        message = str(exc)
        if suggestion:
            message = f'{message}\nSuggestion: {suggestion}'
        raise click.ClickException(message) from exc

    log_level: str | None = ctx.obj['log_level']
    # Logs go to stderr so command output on stdout stays machine readable
    configure_logging(
        log_level=log_level or config.logging.level,
        enable_syslog=config.logging.syslog_enabled,
        syslog_address=config.logging.syslog_address,
        enable_console=config.logging.console_enabled,
        stream=sys.stderr,
    )
    return config


def _run[T](factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine, mapping configuration and queue errors to Click errors."""

    async def _main() -> T:
        return await factory()

    try:
        return asyncio.run(_main())
    except ConfigurationError as exc:
        suggestion = suggest_config_fix(exc)
        message = str(exc) if suggestion is None else f'{exc}\nSuggestion: {suggestion}'
        raise click.ClickException(message) from exc
    except QueueError as exc:
        raise click.ClickException(str(exc)) from exc


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    '--config', '-c',
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    callback=validate_config_path,
    help='Configuration file path (.yaml or .yml)',
)
@click.option(
    '--log-level', '-l',
    type=str,
    default=None,
    callback=validate_log_level,
    help='Logging verbosity level; overrides the configuration file',
)
@click.version_option(version=__version__, prog_name='event-notifications')
@click.pass_context
def cli(ctx: click.Context, config: Path, log_level: str | None) -> None:
    """Event notifications - dispatch events to notification channels.

    Examples:

        # Check a configuration file
        event-notifications -c config.yaml validate

        # Emit an event and wait for delivery results
        event-notifications emit user.welcome --payload '{"userId": 123}' --wait

        # Run the queue workers
        event-notifications worker
    """
    _ = ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['log_level'] = log_level


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the configuration file."""
    config = _load_config(ctx)
    click.echo(f'Configuration valid: {ctx.obj["config_path"]}')
    click.echo(f'Event types: {len(config.event_types)}')
    click.echo(f'Webhook providers: {len(config.providers.webhooks)}')

    for name, event_config in sorted(config.event_types.items()):
        if not event_config.channels:
            click.echo(f"Warning: event type '{name}' has no channels and cannot be emitted")

    for channel in sorted(config.configured_channels() - config.provided_channels()):
        click.echo(f"Warning: channel '{channel}' has no configured provider")


@cli.command()
@click.argument('event_type')
@click.option('--payload', '-p', default='{}', callback=parse_payload, help='Event payload as JSON')
@click.option(
    '--mode', '-m',
    type=click.Choice(['auto', 'sync', 'async']),
    default='auto',
    show_default=True,
    help='Processing mode',
)
@click.option('--wait', '-w', is_flag=True, help='Wait for delivery results')
@click.option('--timeout', '-t', type=click.FloatRange(min=0, min_open=True), default=None, help='Wait timeout in seconds')
@click.option('--correlation-id', default=None, help='Correlation id; generated when omitted')
@click.option(
    '--priority',
    type=click.Choice([p.value for p in EventPriority]),
    default=None,
    help='Queue priority override',
)
@click.pass_context
def emit(
    ctx: click.Context,
    event_type: str,
    payload: object,
    mode: str,
    wait: bool,
    timeout: float | None,
    correlation_id: str | None,
    priority: str | None,
) -> None:
    """Emit EVENT_TYPE with a JSON payload and print the emission result.

    Queue workers are started in-process when --wait is given.
    """
    config = _load_config(ctx)
    options = EmitOptions(
        mode='auto' if mode == 'auto' else ProcessingMode(mode),
        wait_for_result=wait,
        correlation_id=correlation_id,
        timeout=timeout,
        priority=EventPriority(priority) if priority else None,
    )

    async def _emit() -> dict[str, object]:
        system = NotificationSystem(config)
        await system.start(workers=wait)
        try:
            result = await system.emit(event_type, payload, options)
        finally:
            await system.stop()
        return result.to_dict()

    _echo_json(_run(_emit))


@cli.command()
@click.option('--shutdown-timeout', type=float, default=10.0, show_default=True, help='Seconds to wait for in-flight jobs')
@click.pass_context
def worker(ctx: click.Context, shutdown_timeout: float) -> None:
    """Run the queue workers until interrupted."""
    config = _load_config(ctx)

    async def _work() -> None:
        system = NotificationSystem(config)
        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_requested.set)

        await system.start()
        click.echo(f"Workers running for queue '{config.queue.name}' (concurrency {config.queue.concurrency})")
        try:
            _ = await stop_requested.wait()
            logger.info('Shutdown signal received, stopping workers')
        finally:
            await system.stop(shutdown_timeout)
            for sig in (signal.SIGINT, signal.SIGTERM):
                _ = loop.remove_signal_handler(sig)

    _run(_work)
    click.echo('Workers stopped')


@cli.group()
def queue() -> None:
    """Inspect and maintain the durable queue.

    Run maintenance commands while no worker owns the queue.
    """


@queue.command('stats')
@click.pass_context
def queue_stats(ctx: click.Context) -> None:
    """Print job counts per state."""
    config = _load_config(ctx)

    async def _stats() -> dict[str, object]:
        stats = await NotificationSystem(config).queue.get_stats()
        return stats.model_dump()

    _echo_json(_run(_stats))


@queue.command('jobs')
@click.option(
    '--status', '-s',
    type=click.Choice([s.value for s in JobStatus]),
    default=None,
    help='Only list jobs in this state',
)
@click.pass_context
def queue_jobs(ctx: click.Context, status: str | None) -> None:
    """List jobs, oldest first."""
    config = _load_config(ctx)

    async def _jobs() -> list[str]:
        jobs = await NotificationSystem(config).queue.list_jobs(JobStatus(status) if status else None)
        return [
            f'{job.id}  {job.status.value:<9}  {job.attempts}/{job.max_attempts}  {job.name}  {job.created_at.isoformat()}'
            for job in jobs
        ]

    lines = _run(_jobs)
    if not lines:
        click.echo('No jobs')
    for line in lines:
        click.echo(line)


@queue.command('show')
@click.argument('job_id')
@click.pass_context
def queue_show(ctx: click.Context, job_id: str) -> None:
    """Print the stored record of JOB_ID."""
    config = _load_config(ctx)

    async def _show() -> dict[str, object] | None:
        job = await NotificationSystem(config).queue.get_job(job_id)
        return job.to_record() if job else None

    record = _run(_show)
    if record is None:
        raise click.ClickException(f"Job '{job_id}' not found")
    _echo_json(record)


@queue.command('clean')
@click.option('--completed-age', type=click.FloatRange(min=0), default=None, help='Retention of completed jobs in seconds')
@click.option('--failed-age', type=click.FloatRange(min=0), default=None, help='Retention of failed jobs in seconds')
@click.pass_context
def queue_clean(ctx: click.Context, completed_age: float | None, failed_age: float | None) -> None:
    """Remove completed and failed jobs older than their retention window."""
    config = _load_config(ctx)
    policy = CleanupPolicy(
        completed_age=completed_age if completed_age is not None else config.queue.completed_retention,
        failed_age=failed_age if failed_age is not None else config.queue.failed_retention,
    )

    async def _clean() -> int:
        return await NotificationSystem(config).queue.clean(policy)

    removed = _run(_clean)
    click.echo(f'Removed {removed} job(s)')


@queue.command('retry')
@click.argument('job_id')
@click.pass_context
def queue_retry(ctx: click.Context, job_id: str) -> None:
    """Move failed job JOB_ID back to waiting."""
    config = _load_config(ctx)

    async def _retry() -> str:
        job = await NotificationSystem(config).queue.retry_job(job_id)
        return job.id

    click.echo(f"Job '{_run(_retry)}' requeued")


if __name__ == '__main__':
    cli()
