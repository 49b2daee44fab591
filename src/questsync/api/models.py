"""Request/response models for the calendar sync API."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questsync.models import CalendarInfo, Connection, ImportMode


class ApiMeta(BaseModel):
    """Extensible metadata bag attached to every API response."""

    model_config = {"extra": "allow"}


T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Generic API response wrapper.

    All successful responses follow ``{"data": T, "meta": {...}}``.
    """

    data: T
    meta: ApiMeta = Field(default_factory=ApiMeta)


class ErrorDetail(BaseModel):
    """Structured error payload."""

    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail


class ConnectionSummary(BaseModel):
    """Connection fields safe to expose; tokens are never included."""

    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    email: str | None = None
    selected_calendars: list[str] = Field(default_factory=list, alias="selectedCalendars")
    import_as: ImportMode = Field(alias="importAs")
    target_quest_id: UUID | None = Field(default=None, alias="targetQuestId")
    last_synced_at: datetime | None = Field(default=None, alias="lastSyncedAt")
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @classmethod
    def from_connection(cls, connection: Connection) -> ConnectionSummary:
        return cls(
            id=connection.id,
            email=connection.email,
            selected_calendars=connection.selected_calendars,
            import_as=connection.import_as,
            target_quest_id=connection.target_quest_id,
            last_synced_at=connection.last_synced_at,
            created_at=connection.created_at,
        )


class ConnectionStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connected: bool
    connection: ConnectionSummary | None = None
    is_configured: bool = Field(alias="isConfigured")


class CalendarView(BaseModel):
    """One provider calendar as shown to the caller."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    summary: str | None = None
    description: str | None = None
    primary: bool = False
    background_color: str | None = Field(default=None, alias="backgroundColor")

    @classmethod
    def from_info(cls, info: CalendarInfo) -> CalendarView:
        return cls(**info.model_dump())


class CalendarsView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    calendars: list[CalendarView]
    selected_calendars: list[str] = Field(alias="selectedCalendars")
    import_as: ImportMode = Field(alias="importAs")
    target_quest_id: UUID | None = Field(default=None, alias="targetQuestId")


class CalendarSettingsUpdate(BaseModel):
    """Partial update of calendar import settings.

    Fields left out of the request body are unchanged; an explicit
    ``targetQuestId: null`` clears the destination quest.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    selected_calendars: list[str] | None = Field(default=None, alias="selectedCalendars")
    import_as: ImportMode | None = Field(default=None, alias="importAs")
    target_quest_id: UUID | None = Field(default=None, alias="targetQuestId")

    @field_validator("selected_calendars")
    @classmethod
    def _strip_calendar_ids(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [item.strip() for item in value if item.strip()]


class SyncRequest(BaseModel):
    # None or blank falls back to the configured default timezone.
    timezone: str | None = None
