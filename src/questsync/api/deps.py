"""Service wiring and request dependencies for the calendar sync API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Header, HTTPException

from questsync.config import SyncServiceConfig
from questsync.db import Database
from questsync.providers import GoogleCalendarProvider
from questsync.store import PostgresSyncStore, SyncStore
from questsync.sync import CalendarSyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    """Process-wide collaborators shared by all requests."""

    store: SyncStore
    engine: CalendarSyncEngine
    config: SyncServiceConfig
    database: Database | None = None


def get_services() -> SyncServices:
    """Dependency stub -- overridden at app startup or in tests."""
    raise RuntimeError("Sync services not initialized")


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> UUID:
    """Caller identity, supplied by the authenticating proxy."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        return UUID(x_user_id.strip())
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from exc


async def init_services(config: SyncServiceConfig) -> SyncServices:
    """Open the database pool and build the sync engine."""
    database = Database.from_env(config.database.name)
    pool = await database.connect()
    provider = GoogleCalendarProvider(
        client_id=config.google.client_id,
        client_secret=config.google.client_secret,
        page_size=config.sync.page_size,
        max_pages=config.sync.max_pages,
    )
    store = PostgresSyncStore(pool)
    engine = CalendarSyncEngine(provider=provider, store=store, config=config.sync)
    return SyncServices(store=store, engine=engine, config=config, database=database)


async def shutdown_services(services: SyncServices) -> None:
    await services.engine.provider.shutdown()
    if services.database is not None:
        await services.database.close()
