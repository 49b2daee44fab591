"""create_calendar_sync_tables

Revision ID: core_001
Revises:
Create Date: 2026-01-05 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            title TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quests_user_created
            ON quests (user_id, created_at)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            quest_id UUID NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            due_date DATE,
            scheduled_time TIME,
            priority TEXT NOT NULL DEFAULT 'medium'
                CHECK (priority IN ('low', 'medium', 'high')),
            completed BOOLEAN NOT NULL DEFAULT false,
            xp_value INTEGER NOT NULL DEFAULT 10,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS schedule_blocks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            title TEXT NOT NULL,
            start_time TIME NOT NULL,
            end_time TIME NOT NULL,
            days_of_week SMALLINT[] NOT NULL DEFAULT '{}',
            start_date DATE,
            end_date DATE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT schedule_blocks_time_range CHECK (end_time > start_time),
            CONSTRAINT schedule_blocks_days_valid
                CHECK (days_of_week <@ ARRAY[1, 2, 3, 4, 5, 6, 7]::SMALLINT[])
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS calendar_connections (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            provider TEXT NOT NULL DEFAULT 'google',
            access_token TEXT NOT NULL,
            refresh_token TEXT,
            token_expires_at TIMESTAMPTZ NOT NULL,
            email TEXT,
            selected_calendars TEXT[] NOT NULL DEFAULT '{}',
            import_as TEXT NOT NULL DEFAULT 'smart'
                CHECK (import_as IN ('tasks', 'schedule', 'smart')),
            target_quest_id UUID REFERENCES quests(id) ON DELETE SET NULL,
            last_synced_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT calendar_connections_user_provider UNIQUE (user_id, provider)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS imported_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            provider TEXT NOT NULL,
            connection_id UUID REFERENCES calendar_connections(id) ON DELETE SET NULL,
            external_uid TEXT NOT NULL,
            created_as TEXT NOT NULL CHECK (created_as IN ('task', 'schedule_entry')),
            created_id UUID NOT NULL,
            content_hash TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT imported_events_identity UNIQUE (user_id, provider, external_uid)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS imported_events")
    op.execute("DROP TABLE IF EXISTS calendar_connections")
    op.execute("DROP TABLE IF EXISTS schedule_blocks")
    op.execute("DROP TABLE IF EXISTS tasks")
    op.execute("DROP TABLE IF EXISTS quests")
