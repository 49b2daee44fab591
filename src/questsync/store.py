"""Persistence for connections, import mappings and imported entities.

The protocols describe what the sync engine needs; ``PostgresSyncStore``
implements them over an asyncpg pool against the tables created by the
``core`` migration chain.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime, time
from typing import Any, Protocol
from uuid import UUID

from questsync.models import Connection, EntityKind, ImportedEventMapping, ImportMode

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class ConnectionStore(Protocol):
    """Connection reads and writes."""

    async def get_connection(self, user_id: UUID, provider: str) -> Connection | None: ...

    async def save_authorization(
        self,
        *,
        user_id: UUID,
        provider: str,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
        email: str | None = None,
    ) -> Connection: ...

    async def update_tokens(
        self,
        connection_id: UUID,
        *,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None: ...

    async def update_settings(
        self,
        connection_id: UUID,
        *,
        selected_calendars: Sequence[str] | None = None,
        import_as: ImportMode | None = None,
        target_quest_id: UUID | None = UNSET,
    ) -> Connection | None: ...

    async def mark_synced(self, connection_id: UUID, synced_at: datetime) -> None: ...


class MappingStore(Protocol):
    """Bulk mapping reads, used once per run."""

    async def load_mappings(self, user_id: UUID, provider: str) -> list[ImportedEventMapping]: ...


class QuestStore(Protocol):
    """Destination quest lookup."""

    async def find_oldest_quest(self, user_id: UUID) -> UUID | None: ...

    async def create_quest(self, user_id: UUID, title: str) -> UUID: ...

    async def quest_exists(self, user_id: UUID, quest_id: UUID) -> bool: ...


class ImportWriter(Protocol):
    """Entity + mapping writes; each call is one transaction."""

    async def create_task_import(
        self,
        *,
        user_id: UUID,
        provider: str,
        connection_id: UUID | None,
        external_uid: str,
        content_hash: str,
        quest_id: UUID,
        title: str,
        due_date: date,
        scheduled_time: time | None,
    ) -> ImportedEventMapping: ...

    async def create_schedule_import(
        self,
        *,
        user_id: UUID,
        provider: str,
        connection_id: UUID | None,
        external_uid: str,
        content_hash: str,
        title: str,
        entry_date: date,
        start_time: time,
        end_time: time,
    ) -> ImportedEventMapping: ...

    async def update_task_import(
        self,
        mapping: ImportedEventMapping,
        *,
        content_hash: str,
        title: str,
        due_date: date,
        scheduled_time: time | None,
    ) -> None: ...

    async def update_schedule_import(
        self,
        mapping: ImportedEventMapping,
        *,
        content_hash: str,
        title: str,
        entry_date: date,
        start_time: time,
        end_time: time,
    ) -> None: ...


class SyncStore(ConnectionStore, MappingStore, QuestStore, ImportWriter, Protocol):
    """Everything a sync run touches."""


_CONNECTION_COLUMNS = (
    "id, user_id, provider, access_token, refresh_token, token_expires_at, email, "
    "selected_calendars, import_as, target_quest_id, last_synced_at, created_at, updated_at"
)
_MAPPING_COLUMNS = (
    "id, user_id, provider, connection_id, external_uid, created_as, created_id, "
    "content_hash, created_at"
)


def _connection_from_row(row: Any) -> Connection:
    data = dict(row)
    data["selected_calendars"] = list(data.get("selected_calendars") or [])
    return Connection(**data)


class PostgresSyncStore:
    """asyncpg-backed implementation of ``SyncStore``."""

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    # -- connections -------------------------------------------------------

    async def get_connection(self, user_id: UUID, provider: str) -> Connection | None:
        row = await self._pool.fetchrow(
            f"SELECT {_CONNECTION_COLUMNS} FROM calendar_connections "
            "WHERE user_id = $1 AND provider = $2",
            user_id,
            provider,
        )
        return _connection_from_row(row) if row is not None else None

    async def save_authorization(
        self,
        *,
        user_id: UUID,
        provider: str,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
        email: str | None = None,
    ) -> Connection:
        """Insert or refresh the connection for a completed authorization.

        A stored refresh token survives re-authorizations that omit one.
        """
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO calendar_connections
                (user_id, provider, access_token, refresh_token, token_expires_at, email)
            VALUES ($1, $2, $3, NULLIF($4, ''), $5, $6)
            ON CONFLICT (user_id, provider) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token,
                                         calendar_connections.refresh_token),
                token_expires_at = EXCLUDED.token_expires_at,
                email = COALESCE(EXCLUDED.email, calendar_connections.email),
                updated_at = now()
            RETURNING {_CONNECTION_COLUMNS}
            """,
            user_id,
            provider,
            access_token,
            refresh_token,
            token_expires_at,
            email,
        )
        logger.info("Saved %s authorization for user=%s", provider, user_id)
        return _connection_from_row(row)

    async def update_tokens(
        self,
        connection_id: UUID,
        *,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        await self._pool.execute(
            """
            UPDATE calendar_connections
            SET access_token = $2,
                token_expires_at = $3,
                refresh_token = COALESCE(NULLIF($4, ''), refresh_token),
                updated_at = now()
            WHERE id = $1
            """,
            connection_id,
            access_token,
            token_expires_at,
            refresh_token,
        )

    async def update_settings(
        self,
        connection_id: UUID,
        *,
        selected_calendars: Sequence[str] | None = None,
        import_as: ImportMode | None = None,
        target_quest_id: UUID | None = UNSET,
    ) -> Connection | None:
        """Patch connection settings; omitted arguments are left unchanged.

        ``target_quest_id=None`` clears the destination quest.
        """
        assignments: list[str] = []
        args: list[Any] = [connection_id]
        if selected_calendars is not None:
            args.append(list(selected_calendars))
            assignments.append(f"selected_calendars = ${len(args)}")
        if import_as is not None:
            args.append(ImportMode(import_as).value)
            assignments.append(f"import_as = ${len(args)}")
        if target_quest_id is not UNSET:
            args.append(target_quest_id)
            assignments.append(f"target_quest_id = ${len(args)}")
        assignments.append("updated_at = now()")

        row = await self._pool.fetchrow(
            f"UPDATE calendar_connections SET {', '.join(assignments)} "
            f"WHERE id = $1 RETURNING {_CONNECTION_COLUMNS}",
            *args,
        )
        return _connection_from_row(row) if row is not None else None

    async def mark_synced(self, connection_id: UUID, synced_at: datetime) -> None:
        await self._pool.execute(
            "UPDATE calendar_connections SET last_synced_at = $2, updated_at = now() "
            "WHERE id = $1",
            connection_id,
            synced_at,
        )

    # -- mappings ----------------------------------------------------------

    async def load_mappings(self, user_id: UUID, provider: str) -> list[ImportedEventMapping]:
        rows = await self._pool.fetch(
            f"SELECT {_MAPPING_COLUMNS} FROM imported_events "
            "WHERE user_id = $1 AND provider = $2",
            user_id,
            provider,
        )
        return [ImportedEventMapping(**dict(row)) for row in rows]

    # -- quests ------------------------------------------------------------

    async def find_oldest_quest(self, user_id: UUID) -> UUID | None:
        return await self._pool.fetchval(
            "SELECT id FROM quests WHERE user_id = $1 ORDER BY created_at ASC, id ASC LIMIT 1",
            user_id,
        )

    async def create_quest(self, user_id: UUID, title: str) -> UUID:
        quest_id = await self._pool.fetchval(
            "INSERT INTO quests (user_id, title) VALUES ($1, $2) RETURNING id",
            user_id,
            title,
        )
        logger.info("Created quest %r for user=%s", title, user_id)
        return quest_id

    async def quest_exists(self, user_id: UUID, quest_id: UUID) -> bool:
        found = await self._pool.fetchval(
            "SELECT 1 FROM quests WHERE id = $1 AND user_id = $2",
            quest_id,
            user_id,
        )
        return found is not None

    # -- imported entities -------------------------------------------------

    async def _insert_mapping(
        self,
        conn: Any,
        *,
        user_id: UUID,
        provider: str,
        connection_id: UUID | None,
        external_uid: str,
        created_as: EntityKind,
        created_id: UUID,
        content_hash: str,
    ) -> ImportedEventMapping:
        row = await conn.fetchrow(
            f"""
            INSERT INTO imported_events
                (user_id, provider, connection_id, external_uid, created_as,
                 created_id, content_hash)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            RETURNING {_MAPPING_COLUMNS}
            """,
            user_id,
            provider,
            connection_id,
            external_uid,
            created_as.value,
            created_id,
            content_hash,
        )
        return ImportedEventMapping(**dict(row))

    async def create_task_import(
        self,
        *,
        user_id: UUID,
        provider: str,
        connection_id: UUID | None,
        external_uid: str,
        content_hash: str,
        quest_id: UUID,
        title: str,
        due_date: date,
        scheduled_time: time | None,
    ) -> ImportedEventMapping:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                task_id = await conn.fetchval(
                    """
                    INSERT INTO tasks (quest_id, title, due_date, scheduled_time)
                    VALUES ($1, $2, $3, $4)
                    RETURNING id
                    """,
                    quest_id,
                    title,
                    due_date,
                    scheduled_time,
                )
                return await self._insert_mapping(
                    conn,
                    user_id=user_id,
                    provider=provider,
                    connection_id=connection_id,
                    external_uid=external_uid,
                    created_as=EntityKind.TASK,
                    created_id=task_id,
                    content_hash=content_hash,
                )

    async def create_schedule_import(
        self,
        *,
        user_id: UUID,
        provider: str,
        connection_id: UUID | None,
        external_uid: str,
        content_hash: str,
        title: str,
        entry_date: date,
        start_time: time,
        end_time: time,
    ) -> ImportedEventMapping:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                entry_id = await conn.fetchval(
                    """
                    INSERT INTO schedule_blocks
                        (user_id, title, start_time, end_time, days_of_week,
                         start_date, end_date)
                    VALUES ($1, $2, $3, $4, $5, $6, $6)
                    RETURNING id
                    """,
                    user_id,
                    title,
                    start_time,
                    end_time,
                    [entry_date.isoweekday()],
                    entry_date,
                )
                return await self._insert_mapping(
                    conn,
                    user_id=user_id,
                    provider=provider,
                    connection_id=connection_id,
                    external_uid=external_uid,
                    created_as=EntityKind.SCHEDULE_ENTRY,
                    created_id=entry_id,
                    content_hash=content_hash,
                )

    async def update_task_import(
        self,
        mapping: ImportedEventMapping,
        *,
        content_hash: str,
        title: str,
        due_date: date,
        scheduled_time: time | None,
    ) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE tasks
                    SET title = $2, due_date = $3, scheduled_time = $4, updated_at = now()
                    WHERE id = $1
                    """,
                    mapping.created_id,
                    title,
                    due_date,
                    scheduled_time,
                )
                await conn.execute(
                    "UPDATE imported_events SET content_hash = $2 WHERE id = $1",
                    mapping.id,
                    content_hash,
                )

    async def update_schedule_import(
        self,
        mapping: ImportedEventMapping,
        *,
        content_hash: str,
        title: str,
        entry_date: date,
        start_time: time,
        end_time: time,
    ) -> None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE schedule_blocks
                    SET title = $2, start_time = $3, end_time = $4,
                        days_of_week = $5, start_date = $6, end_date = $6,
                        updated_at = now()
                    WHERE id = $1
                    """,
                    mapping.created_id,
                    title,
                    start_time,
                    end_time,
                    [entry_date.isoweekday()],
                    entry_date,
                )
                await conn.execute(
                    "UPDATE imported_events SET content_hash = $2 WHERE id = $1",
                    mapping.id,
                    content_hash,
                )
