"""CLI for questsync: connect, configure and run calendar imports."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID

import click
from pydantic import ValidationError

from questsync.config import ConfigError, SyncServiceConfig, load_config
from questsync.core.logging import configure_logging
from questsync.core.telemetry import init_telemetry
from questsync.db import Database
from questsync.errors import ProviderRequestError, RunFatalError
from questsync.migrations import run_migrations
from questsync.models import ImportMode, SyncResult, TokenGrant
from questsync.providers import GoogleCalendarProvider
from questsync.store import UNSET, PostgresSyncStore, SyncStore
from questsync.sync import CalendarSyncEngine

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Live collaborators for one CLI invocation."""

    config: SyncServiceConfig
    store: SyncStore
    engine: CalendarSyncEngine


@asynccontextmanager
async def open_runtime(config: SyncServiceConfig) -> AsyncIterator[Runtime]:
    """Connect to the database and build the sync engine; tear both down on exit."""
    db = Database.from_env(config.database.name)
    pool = await db.connect()
    provider = GoogleCalendarProvider(
        client_id=config.google.client_id,
        client_secret=config.google.client_secret,
        page_size=config.sync.page_size,
        max_pages=config.sync.max_pages,
    )
    store = PostgresSyncStore(pool)
    try:
        yield Runtime(
            config=config,
            store=store,
            engine=CalendarSyncEngine(provider=provider, store=store, config=config.sync),
        )
    finally:
        await provider.shutdown()
        await db.close()


def _config(ctx: click.Context) -> SyncServiceConfig:
    return ctx.obj["config"]


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to questsync.toml (or a directory containing it)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """questsync: import external calendar events as tasks and schedule entries."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    init_telemetry("questsync")
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--user-id", type=click.UUID, required=True, help="User to sync")
@click.option("--timezone", default=None, help="IANA timezone for local times")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def sync(ctx: click.Context, user_id: UUID, timezone: str | None, as_json: bool) -> None:
    """Run one calendar import for a user."""
    config = _config(ctx)
    tz_name = timezone or config.sync.default_timezone

    async def _run() -> SyncResult:
        async with open_runtime(config) as runtime:
            return await runtime.engine.run_sync(user_id, tz_name)

    try:
        result = asyncio.run(_run())
    except RunFatalError as exc:
        _fail(str(exc))
        return

    if as_json:
        click.echo(result.model_dump_json(by_alias=True))
    else:
        click.echo(
            f"Tasks: {result.tasks_created} created, {result.tasks_updated} updated\n"
            f"Schedule entries: {result.schedule_entries_created} created, "
            f"{result.schedule_entries_updated} updated\n"
            f"Events: {result.events_processed} processed, {result.events_skipped} unchanged\n"
            f"Calendars: {result.calendars_processed} processed"
        )
        for error in result.errors:
            click.echo(f"  error: {error}")


@cli.command()
@click.option("--user-id", type=click.UUID, required=True, help="User to inspect")
@click.pass_context
def status(ctx: click.Context, user_id: UUID) -> None:
    """Show the user's connection and import settings."""
    config = _config(ctx)

    async def _load():
        async with open_runtime(config) as runtime:
            return await runtime.store.get_connection(user_id, runtime.engine.provider.name)

    connection = asyncio.run(_load())
    configured = "yes" if config.google.is_configured else "no"
    click.echo(f"Client credentials configured: {configured}")
    if connection is None:
        click.echo("Not connected")
        return

    last_synced = connection.last_synced_at.isoformat() if connection.last_synced_at else "never"
    click.echo(f"Connected: {connection.email or '(unknown account)'}")
    click.echo(f"Import as: {connection.import_as}")
    click.echo(f"Target quest: {connection.target_quest_id or '(default)'}")
    click.echo(f"Selected calendars: {', '.join(connection.selected_calendars) or '(none)'}")
    click.echo(f"Last synced: {last_synced}")


@cli.command()
@click.option("--user-id", type=click.UUID, required=True, help="User whose calendars to list")
@click.pass_context
def calendars(ctx: click.Context, user_id: UUID) -> None:
    """List calendars available to the connected account."""
    config = _config(ctx)

    async def _load():
        async with open_runtime(config) as runtime:
            return await runtime.engine.list_calendars(user_id)

    try:
        connection, available = asyncio.run(_load())
    except (RunFatalError, ProviderRequestError) as exc:
        _fail(str(exc))
        return

    selected = set(connection.selected_calendars)
    for info in available:
        marker = "*" if info.id in selected else " "
        primary = " (primary)" if info.primary else ""
        click.echo(f"{marker} {info.id:<50} {info.summary or ''}{primary}")


@cli.command()
@click.option("--user-id", type=click.UUID, required=True, help="User to configure")
@click.option("--calendar", "calendar_ids", multiple=True, help="Calendar id to import")
@click.option(
    "--import-as",
    type=click.Choice([mode.value for mode in ImportMode]),
    default=None,
    help="Destination for imported events",
)
@click.option("--quest-id", type=click.UUID, default=None, help="Destination quest for tasks")
@click.option("--clear-quest", is_flag=True, help="Use the default quest for tasks")
@click.pass_context
def select(
    ctx: click.Context,
    user_id: UUID,
    calendar_ids: tuple[str, ...],
    import_as: str | None,
    quest_id: UUID | None,
    clear_quest: bool,
) -> None:
    """Choose calendars and where their events land."""
    if quest_id is not None and clear_quest:
        _fail("--quest-id and --clear-quest are mutually exclusive")
        return
    config = _config(ctx)

    async def _update():
        async with open_runtime(config) as runtime:
            provider_name = runtime.engine.provider.name
            connection = await runtime.store.get_connection(user_id, provider_name)
            if connection is None:
                return None, "No calendar connection found"
            if quest_id is not None and not await runtime.store.quest_exists(user_id, quest_id):
                return None, f"Quest not found: {quest_id}"
            target = None if clear_quest else (quest_id if quest_id is not None else UNSET)
            updated = await runtime.store.update_settings(
                connection.id,
                selected_calendars=list(calendar_ids) if calendar_ids else None,
                import_as=ImportMode(import_as) if import_as else None,
                target_quest_id=target,
            )
            return updated, None

    connection, error = asyncio.run(_update())
    if error is not None:
        _fail(error)
        return
    click.echo(f"Selected calendars: {', '.join(connection.selected_calendars) or '(none)'}")
    click.echo(f"Import as: {connection.import_as}")


@cli.command()
@click.option("--user-id", type=click.UUID, required=True, help="User to connect")
@click.option(
    "--grant",
    "grant_file",
    type=click.File("r"),
    default="-",
    help="JSON token grant (access_token, refresh_token, expires_in); '-' reads stdin",
)
@click.option("--email", default=None, help="Account email to record")
@click.pass_context
def connect(ctx: click.Context, user_id: UUID, grant_file, email: str | None) -> None:
    """Store an authorization obtained from the provider's consent flow."""
    try:
        grant = TokenGrant.model_validate(json.load(grant_file))
    except (ValueError, ValidationError) as exc:
        _fail(f"Invalid token grant: {exc}")
        return
    config = _config(ctx)
    expires_at = datetime.now(UTC) + timedelta(seconds=grant.expires_in)

    async def _save():
        async with open_runtime(config) as runtime:
            return await runtime.store.save_authorization(
                user_id=user_id,
                provider=runtime.engine.provider.name,
                access_token=grant.access_token,
                token_expires_at=expires_at,
                refresh_token=grant.refresh_token,
                email=email,
            )

    connection = asyncio.run(_save())
    click.echo(f"Connected {connection.provider} for user {connection.user_id}")
    if connection.refresh_token is None:
        click.echo("Warning: no refresh token stored; re-authorize once the token expires")


@cli.command()
@click.pass_context
def migrate(ctx: click.Context) -> None:
    """Create or upgrade the database schema."""
    config = _config(ctx)
    db = Database.from_env(config.database.name)

    async def _migrate() -> None:
        await db.provision()
        await run_migrations(db.url)

    asyncio.run(_migrate())
    click.echo(f"Database {config.database.name} is up to date")


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", type=int, default=8000, help="Port to listen on")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Serve the calendar sync HTTP API."""
    import uvicorn

    from questsync.api.app import create_app

    config = _config(ctx)
    click.echo(f"Serving questsync API on http://{host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
