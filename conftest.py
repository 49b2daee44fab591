"""Root conftest -- Postgres testcontainer fixtures for integration tests.

In-memory doubles for unit tests live in ``questsync.testing`` and are
wired up as fixtures in ``tests/conftest.py``.
"""

from __future__ import annotations

import shutil
import uuid
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from testcontainers.postgres import PostgresContainer

    from questsync.db import Database

docker_available = shutil.which("docker") is not None


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """One Postgres server for the whole session.

    Each ``provisioned_database()`` call creates its own randomly named
    database on it, so schemas and rows never leak between tests.
    """
    if not docker_available:
        pytest.skip("Docker not available")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
def provisioned_database(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Database]]:
    """Factory for a fresh database with an open pool.

    Usage::

        async with provisioned_database() as db:
            pool = db.require_pool()
    """
    from questsync.db import Database

    @asynccontextmanager
    async def _provision(*, max_pool_size: int = 3) -> AsyncIterator[Database]:
        db = Database(
            db_name=f"test_{uuid.uuid4().hex[:12]}",
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=1,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        await db.connect()
        try:
            yield db
        finally:
            await db.close()

    return _provision
