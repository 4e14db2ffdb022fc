"""CLI for slotwise: run the API, prepare the database, sync calendars."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx

from slotwise import __version__
from slotwise.api.deps import build_services, open_storage
from slotwise.config import AppConfig, ConfigError, load_config
from slotwise.core.logging import configure_logging
from slotwise.errors import CalendarError
from slotwise.models import INTEGRATION_TYPES
from slotwise.orchestrator import SyncSummary

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to slotwise.toml (defaults to $SLOTWISE_CONFIG or ./slotwise.toml)",
)


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """slotwise: calendar sync and scheduling service."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")


@cli.command()
@_config_option
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind")
@click.option("--port", type=int, default=5000, show_default=True, help="Port to listen on")
def serve(config_path: Path | None, host: str, port: int) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from slotwise.api.app import create_app

    config = _load(config_path)
    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(config.logging.level, config.logging.format, log_root)
    click.echo(f"Starting slotwise API on http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


@cli.command("init-db")
@_config_option
def init_db(config_path: Path | None) -> None:
    """Create the PostgreSQL tables (idempotent)."""
    config = _load(config_path)
    if config.storage.backend != "postgres":
        click.echo("init-db requires storage.backend = 'postgres' (or DATABASE_URL)", err=True)
        sys.exit(1)
    asyncio.run(_init_db(config))
    click.echo("Database schema is up to date")


async def _init_db(config: AppConfig) -> None:
    storage = await open_storage(config)
    await storage.close()


@cli.command()
@_config_option
@click.option("--user", "user_id", type=int, required=True, help="User whose calendars to sync")
@click.option(
    "--type",
    "calendar_type",
    type=click.Choice([str(t) for t in INTEGRATION_TYPES]),
    required=True,
    help="Calendar type to sync",
)
@click.option("--integration", "integration_id", type=int, default=None, help="One integration id")
def sync(
    config_path: Path | None,
    user_id: int,
    calendar_type: str,
    integration_id: int | None,
) -> None:
    """Import provider events for a user, once."""
    config = _load(config_path)
    try:
        summary = asyncio.run(_sync(config, user_id, calendar_type, integration_id))
    except CalendarError as exc:
        click.echo(f"Sync failed: {exc}", err=True)
        sys.exit(1)
    click.echo(summary.model_dump_json(indent=2))
    if summary.failed:
        sys.exit(2)


async def _sync(
    config: AppConfig,
    user_id: int,
    calendar_type: str,
    integration_id: int | None,
) -> SyncSummary:
    storage = await open_storage(config)
    try:
        async with httpx.AsyncClient(timeout=config.http_timeout_seconds) as http_client:
            services = build_services(config, storage, http_client)
            return await services.orchestrator.sync(user_id, calendar_type, integration_id)
    finally:
        await storage.close()
