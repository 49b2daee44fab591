"""Provider-neutral models shared by the calendar sync engine."""

from __future__ import annotations

import enum
from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImportMode(enum.StrEnum):
    """Where imported events land."""

    TASKS = "tasks"
    SCHEDULE = "schedule"
    SMART = "smart"


class EntityKind(enum.StrEnum):
    """Internal entity kind produced by an import."""

    TASK = "task"
    SCHEDULE_ENTRY = "schedule_entry"


class ReconcileAction(enum.StrEnum):
    SKIPPED = "skipped"
    CREATED = "created"
    UPDATED = "updated"


class Connection(BaseModel):
    """One user's authorized link to a calendar provider."""

    model_config = ConfigDict(extra="ignore")

    id: UUID
    user_id: UUID
    provider: str = "google"
    access_token: str
    refresh_token: str | None = None
    token_expires_at: datetime
    email: str | None = None
    selected_calendars: list[str] = Field(default_factory=list)
    import_as: ImportMode = ImportMode.SMART
    target_quest_id: UUID | None = None
    last_synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("refresh_token")
    @classmethod
    def _normalize_refresh_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("selected_calendars")
    @classmethod
    def _dedupe_calendars(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for calendar_id in value:
            normalized = calendar_id.strip()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.id!r}, user_id={self.user_id!r}, "
            f"provider={self.provider!r}, access_token=<REDACTED>, "
            f"refresh_token=<REDACTED>, token_expires_at={self.token_expires_at!r}, "
            f"selected_calendars={self.selected_calendars!r}, import_as={self.import_as!r})"
        )

    __str__ = __repr__


class TokenGrant(BaseModel):
    """Token endpoint response after a code or refresh-token exchange."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    expires_in: int = 3600
    refresh_token: str | None = None

    @field_validator("access_token")
    @classmethod
    def _normalize_access_token(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("access_token must be a non-empty string")
        return normalized

    @field_validator("refresh_token")
    @classmethod
    def _normalize_refresh_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator("expires_in")
    @classmethod
    def _positive_expiry(cls, value: int) -> int:
        return value if value > 0 else 3600

    def __repr__(self) -> str:
        return f"TokenGrant(access_token=<REDACTED>, expires_in={self.expires_in!r})"

    __str__ = __repr__


class EventBoundary(BaseModel):
    """Raw provider start/end: ``date`` for all-day, ``date_time`` for timed."""

    model_config = ConfigDict(extra="forbid")

    date: str | None = None
    date_time: str | None = None
    time_zone: str | None = None


class ProviderEvent(BaseModel):
    """One event as returned by a provider, before normalization."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    calendar_id: str
    summary: str | None = None
    status: str | None = None
    start: EventBoundary
    end: EventBoundary | None = None

    @property
    def title(self) -> str | None:
        if self.summary is None:
            return None
        normalized = self.summary.strip()
        return normalized or None

    @property
    def is_cancelled(self) -> bool:
        return (self.status or "").strip().lower() == "cancelled"

    @property
    def is_all_day(self) -> bool:
        return self.start.date_time is None and self.start.date is not None


class NormalizedEvent(BaseModel):
    """A provider event translated into internal date/time invariants."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str
    calendar_id: str
    title: str
    event_date: date
    start_time: time | None = None
    end_time: time | None = None
    all_day: bool = False


class ImportedEventMapping(BaseModel):
    """Link between one external event and the internal entity it produced."""

    model_config = ConfigDict(extra="ignore")

    id: UUID
    user_id: UUID
    provider: str
    connection_id: UUID | None = None
    external_uid: str
    created_as: EntityKind
    created_id: UUID
    content_hash: str
    created_at: datetime | None = None


class CalendarInfo(BaseModel):
    """A calendar the provider account can read."""

    id: str
    summary: str | None = None
    description: str | None = None
    primary: bool = False
    background_color: str | None = Field(default=None, serialization_alias="backgroundColor")


class SyncResult(BaseModel):
    """Aggregate outcome of one sync run.

    Field aliases are the wire contract consumed by the calling layer and
    must not change shape between patch releases.
    """

    model_config = ConfigDict(populate_by_name=True)

    tasks_created: int = Field(default=0, alias="tasksCreated")
    tasks_updated: int = Field(default=0, alias="tasksUpdated")
    schedule_entries_created: int = Field(default=0, alias="scheduleBlocksCreated")
    schedule_entries_updated: int = Field(default=0, alias="scheduleBlocksUpdated")
    events_processed: int = Field(default=0, alias="eventsProcessed")
    events_skipped: int = Field(default=0, alias="eventsSkipped")
    calendars_processed: int = Field(default=0, alias="calendarsProcessed")
    errors: list[str] = Field(default_factory=list)
    last_synced_at: datetime | None = Field(default=None, alias="lastSyncedAt")

    @property
    def created(self) -> int:
        return self.tasks_created + self.schedule_entries_created

    @property
    def updated(self) -> int:
        return self.tasks_updated + self.schedule_entries_updated
