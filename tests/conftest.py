"""Shared fixtures for the questsync unit tests.

Postgres fixtures (``postgres_container``, ``provisioned_database``) come
from the root ``conftest.py``; the doubles here come from
``questsync.testing``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from questsync.config import SyncConfig
from questsync.models import Connection
from questsync.sync import CalendarSyncEngine
from questsync.testing import FakeCalendarProvider, InMemorySyncStore, make_connection

_FIXED_NOW = datetime(2026, 3, 9, 12, 0, tzinfo=UTC)


@pytest.fixture
def fixed_now() -> datetime:
    """Clock reading used by every engine built from these fixtures."""
    return _FIXED_NOW


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def store() -> InMemorySyncStore:
    return InMemorySyncStore()


@pytest.fixture
def provider() -> FakeCalendarProvider:
    return FakeCalendarProvider()


@pytest.fixture
def connection(store: InMemorySyncStore, user_id: UUID, fixed_now: datetime) -> Connection:
    """A fresh-token connection importing ``primary`` in smart mode."""
    return store.add_connection(
        make_connection(user_id=user_id, token_expires_at=fixed_now + timedelta(hours=1))
    )


@pytest.fixture
def make_engine(
    provider: FakeCalendarProvider,
    store: InMemorySyncStore,
    fixed_now: datetime,
) -> Callable[..., CalendarSyncEngine]:
    """Build an engine over the shared doubles, optionally with a custom config."""

    def _make(config: SyncConfig | None = None, **kwargs) -> CalendarSyncEngine:
        return CalendarSyncEngine(
            provider=provider,
            store=store,
            config=config or SyncConfig(),
            clock=lambda: fixed_now,
            **kwargs,
        )

    return _make


@pytest.fixture
def engine(make_engine: Callable[..., CalendarSyncEngine]) -> CalendarSyncEngine:
    return make_engine()
