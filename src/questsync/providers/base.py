"""Provider contract for calendar event import."""

from __future__ import annotations

import abc
import logging
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from questsync.errors import FetchFailedError, ProviderRequestError
from questsync.models import CalendarInfo, ProviderEvent, TokenGrant

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 4


class EventPage(BaseModel):
    """One page of provider events."""

    model_config = ConfigDict(extra="forbid")

    events: list[ProviderEvent] = Field(default_factory=list)
    next_page_token: str | None = None

    @field_validator("next_page_token")
    @classmethod
    def _normalize_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class CalendarProvider(abc.ABC):
    """Provider contract for calendar sync.

    Subclasses implement single-page requests; ``fetch_events`` walks the
    pages and applies the import filter once for every provider.
    """

    max_pages: int = DEFAULT_MAX_PAGES

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Stable provider name."""
        ...

    @property
    def uid_prefix(self) -> str:
        """Leading segment of external uids minted for this provider."""
        return self.name

    @property
    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Whether client credentials for token refresh are available."""
        ...

    @abc.abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        ...

    @abc.abstractmethod
    async def list_events_page(
        self,
        calendar_id: str,
        *,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        page_token: str | None = None,
    ) -> EventPage:
        """Fetch one page of expanded single events ordered by start time."""
        ...

    @abc.abstractmethod
    async def list_calendars(self, access_token: str) -> list[CalendarInfo]:
        """List calendars readable by the authorized account."""
        ...

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""
        ...

    async def fetch_events(
        self,
        calendar_id: str,
        *,
        time_min: datetime,
        time_max: datetime,
        access_token: str,
    ) -> list[ProviderEvent]:
        """Return importable events for one calendar in ``[time_min, time_max]``.

        Cancelled and titleless events are dropped. Any request failure is
        reported as ``FetchFailedError`` so callers can skip the calendar.
        """
        events: list[ProviderEvent] = []
        page_token: str | None = None
        pages = 0

        while True:
            try:
                page = await self.list_events_page(
                    calendar_id,
                    access_token=access_token,
                    time_min=time_min,
                    time_max=time_max,
                    page_token=page_token,
                )
            except ProviderRequestError as exc:
                logger.warning(
                    "Event fetch failed for provider=%s calendar=%s status=%s: %s",
                    self.name,
                    calendar_id,
                    exc.status_code,
                    exc.message,
                )
                raise FetchFailedError(calendar_id) from exc

            pages += 1
            events.extend(page.events)
            page_token = page.next_page_token
            if page_token is None:
                break
            if pages >= self.max_pages:
                logger.warning(
                    "Event fetch truncated for provider=%s calendar=%s after %d pages",
                    self.name,
                    calendar_id,
                    pages,
                )
                break

        importable = [event for event in events if _is_importable(event)]
        logger.debug(
            "Fetched %d events (%d importable) for provider=%s calendar=%s",
            len(events),
            len(importable),
            self.name,
            calendar_id,
        )
        return importable


def _is_importable(event: ProviderEvent) -> bool:
    return not event.is_cancelled and event.title is not None
