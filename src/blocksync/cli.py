"""CLI for blocksync: mirror busy time across calendar accounts."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from pathlib import Path

import click

from blocksync import __version__
from blocksync.config import BlocksyncConfig, load_config, resolve_config_path
from blocksync.core.lock import InstanceLock
from blocksync.core.logging import configure_logging
from blocksync.core.scheduler import SyncWorker
from blocksync.core.telemetry import init_telemetry
from blocksync.errors import BlocksyncError, ConfigError
from blocksync.service import PassMode, PassResult, SyncService, build_provider

logger = logging.getLogger(__name__)

# click's convention for usage/configuration problems
CONFIG_ERROR_EXIT_CODE = 2


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to blocksync.toml (default: $BLOCKSYNC_CONFIG or ./blocksync.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """blocksync: keep every calendar blocked for meetings held in the others."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = resolve_config_path(config_path)


def _load(ctx: click.Context) -> BlocksyncConfig:
    path = ctx.obj["config_path"]
    try:
        config = load_config(path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(CONFIG_ERROR_EXIT_CODE)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
    )
    init_telemetry()
    return config


def _to_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    # Naive dates typed on the command line are local time.
    return value if value.tzinfo is not None else value.astimezone()


def _echo_result(result: PassResult) -> None:
    report = result.report
    label = "Planned" if report.dry_run else "Applied"
    click.echo(
        f"{label}: {report.created} create(s), {report.deleted} delete(s)"
        + (f", {len(report.failures)} failure(s)" if report.failures else "")
    )
    for failure in report.failures:
        click.echo(f"  failed: {failure.account} {failure.operation}: {failure.error}")


def _run_single(service: SyncService, mode: PassMode) -> None:
    try:
        result = asyncio.run(service.run_pass(mode))
    except BlocksyncError as exc:
        logger.error("Sync failed: %s", exc)
        click.echo(f"Sync failed: {exc}", err=True)
        sys.exit(1)
    _echo_result(result)


async def _run_background(worker: SyncWorker) -> None:
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        click.echo("\nShutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    worker.start()
    await shutdown_event.wait()
    await worker.stop()


@cli.command()
@click.option("-b", "--background", is_flag=True, help="Keep running and sync on every tick")
@click.option(
    "--start",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M"]),
    default=None,
    help="Start of the sync window (default: now)",
)
@click.option("-d", "--days", type=click.IntRange(min=1), default=None, help="Days to sync")
@click.option("-t", "--test", "dry_run", is_flag=True, help="Print planned changes only")
@click.pass_context
def sync(
    ctx: click.Context,
    background: bool,
    start: datetime | None,
    days: int | None,
    dry_run: bool,
) -> None:
    """Create missing blockers and delete stale ones."""
    config = _load(ctx)
    lock = InstanceLock(config.lock_path)
    if not lock.acquire():
        # Another instance is already syncing these calendars.
        return

    try:
        service = SyncService(
            config,
            provider_factory=build_provider,
            dry_run=dry_run,
            days=days,
            start=_to_aware(start),
        )
        if not background:
            _run_single(service, PassMode.sync)
            return

        worker = SyncWorker(
            lambda: service.run_pass(PassMode.sync),
            interval=timedelta(minutes=config.sync.interval_minutes),
            cron=config.sync.cron,
        )
        click.echo(f"Background sync running for {', '.join(config.account_names)}")
        asyncio.run(_run_background(worker))
    finally:
        lock.release()


@cli.command()
@click.option("-t", "--test", "dry_run", is_flag=True, help="Print planned deletions only")
@click.pass_context
def reset(ctx: click.Context, dry_run: bool) -> None:
    """Delete every blocker, keeping those that have a location."""
    config = _load(ctx)
    lock = InstanceLock(config.lock_path)
    if not lock.acquire():
        return

    try:
        service = SyncService(config, provider_factory=build_provider, dry_run=dry_run)
        _run_single(service, PassMode.reset)
    finally:
        lock.release()


@cli.command("accounts")
@click.pass_context
def accounts_cmd(ctx: click.Context) -> None:
    """List configured accounts."""
    config = _load(ctx)
    if not config.accounts:
        click.echo("No accounts configured")
        return

    click.echo(f"{'Name':<20} {'Provider':<10} {'Calendar'}")
    click.echo("-" * 60)
    for account in config.accounts:
        click.echo(f"{account.name:<20} {account.provider:<10} {account.calendar_id}")


def main() -> None:
    cli(obj={})
