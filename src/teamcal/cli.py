"""CLI for teamcal: API server, migrations and the availability batch."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from datetime import date
from pathlib import Path

import click

from teamcal.config import CONFIG_ENV_VAR, ConfigError, TeamcalConfig, load_config
from teamcal.core.logging import configure_logging

logger = logging.getLogger(__name__)


def _load(config_path: Path | None, process_name: str) -> TeamcalConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Invalid configuration: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
        process_name=process_name,
    )
    return config


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    envvar="TEAMCAL_CONFIG",
    help="Path to teamcal.toml (or a directory containing it)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Teamcal: calendar feed aggregation with per-item privacy controls."""
    ctx.obj = {"config_path": config_path}


@cli.command()
@click.option("--host", default=None, help="Host to bind (defaults to [teamcal.api] host)")
@click.option(
    "--port", type=int, default=None, help="Port to bind (defaults to [teamcal.api] port)"
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the HTTP API server."""
    import uvicorn

    config_path = ctx.obj["config_path"]
    config = _load(config_path, "api")
    if config_path is not None:
        # The app factory re-reads the config in the server process.
        os.environ[CONFIG_ENV_VAR] = str(config_path)
    host = host or config.api.host
    port = port or config.api.port
    click.echo(f"Starting teamcal API on {host}:{port}")
    uvicorn.run("teamcal.api.app:create_app", host=host, port=port, factory=True)


@cli.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Apply database migrations to head."""
    from teamcal.migrations import run_migrations

    config = _load(ctx.obj["config_path"], "migrate")
    db = config.database.build()
    click.echo(f"Migrating database {config.database.name}")
    asyncio.run(run_migrations(db.url))
    click.echo("Migrations complete")


@cli.command("recompute-availability")
@click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="UTC day to recompute (YYYY-MM-DD); defaults to today",
)
@click.pass_context
def recompute_availability(ctx: click.Context, day) -> None:
    """Run the availability batch once for every user."""
    config = _load(ctx.obj["config_path"], "batch")
    target = day.date() if day is not None else None
    result = asyncio.run(_recompute(config, target))
    click.echo(
        f"Recomputed availability for {result.day.isoformat()}: "
        f"{len(result.processed)} processed, {len(result.failed)} failed"
    )
    for user_id, error in sorted(result.failed.items()):
        click.echo(f"  failed: {user_id}: {error}")
    if result.failed:
        sys.exit(1)


@cli.command()
@click.pass_context
def scheduler(ctx: click.Context) -> None:
    """Run the daily availability batch on its cron schedule until interrupted."""
    config = _load(ctx.obj["config_path"], "scheduler")
    click.echo(f"Scheduling availability recompute on '{config.availability.cron}' (UTC)")
    asyncio.run(_run_scheduler(config))


async def _recompute(config: TeamcalConfig, day: date | None):
    from teamcal.engine.availability import AvailabilityComputer
    from teamcal.store import PostgresRecordStore

    db = config.database.build()
    await db.connect()
    try:
        computer = AvailabilityComputer(
            PostgresRecordStore(db),
            workday_hours=config.availability.workday_hours,
            batch_concurrency=config.availability.batch_concurrency,
        )
        return await computer.recompute_all(day)
    finally:
        await db.close()


async def _run_scheduler(config: TeamcalConfig) -> None:
    from teamcal.core.scheduler import run_daily
    from teamcal.engine.availability import AvailabilityComputer
    from teamcal.store import PostgresRecordStore

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    db = config.database.build()
    await db.connect()
    try:
        computer = AvailabilityComputer(
            PostgresRecordStore(db),
            workday_hours=config.availability.workday_hours,
            batch_concurrency=config.availability.batch_concurrency,
        )
        await run_daily(computer, config.availability.cron, stop=shutdown_event)
    finally:
        await db.close()
