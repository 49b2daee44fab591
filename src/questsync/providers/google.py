"""Google Calendar v3 provider.

All Google wire shapes (OAuth token responses, event and calendar-list
payloads) are parsed here and nowhere else.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from questsync.errors import ProviderRequestError, TokenRefreshError
from questsync.models import CalendarInfo, EventBoundary, ProviderEvent, TokenGrant
from questsync.providers.base import DEFAULT_MAX_PAGES, CalendarProvider, EventPage

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_LIST_URL = f"{GOOGLE_CALENDAR_API_BASE_URL}/users/me/calendarList"

DEFAULT_GOOGLE_PAGE_SIZE = 250
# Upper bound on calendar-list pages; accounts rarely exceed one page.
_MAX_CALENDAR_LIST_PAGES = 10


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar API provider implementation for event import."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        page_size: int = DEFAULT_GOOGLE_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client_id = (client_id or "").strip() or None
        self._client_secret = (client_secret or "").strip() or None
        self._page_size = max(1, int(page_size))
        self.max_pages = max(1, int(max_pages))
        # Injected clients belong to the caller and are not closed by shutdown().
        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=10.0))
        self._http_client = http_client

    @property
    def name(self) -> str:
        return "google"

    @property
    def uid_prefix(self) -> str:
        # Matches uids already stored by earlier imports.
        return "gcal"

    @property
    def is_configured(self) -> bool:
        return self._client_id is not None and self._client_secret is not None

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        if not self.is_configured:
            raise TokenRefreshError("Google OAuth client credentials are not configured")
        refresh_token = refresh_token.strip()
        if not refresh_token:
            raise TokenRefreshError("Refresh token must be a non-empty string")

        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL, data=form, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(
                f"Google OAuth token refresh request failed: {type(exc).__name__}"
            ) from exc

        payload = _json_object(
            response,
            lambda message: TokenRefreshError(f"Google OAuth token {message}"),
            failure_prefix="refresh failed",
        )
        access_token = _as_non_empty_string(payload.get("access_token"))
        if access_token is None:
            raise TokenRefreshError(
                "Google OAuth token response is missing a non-empty access_token"
            )
        refresh_raw = payload.get("refresh_token")
        return TokenGrant(
            access_token=access_token,
            expires_in=_coerce_expires_in_seconds(payload.get("expires_in")),
            refresh_token=refresh_raw if isinstance(refresh_raw, str) else None,
        )

    async def list_events_page(
        self,
        calendar_id: str,
        *,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        page_token: str | None = None,
    ) -> EventPage:
        params: dict[str, Any] = {
            "timeMin": _format_rfc3339(time_min),
            "timeMax": _format_rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self._page_size,
        }
        if page_token is not None:
            params["pageToken"] = page_token

        url = f"{GOOGLE_CALENDAR_API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events"
        payload = await self._request_json(url, params=params, access_token=access_token)
        return _parse_google_events_page(payload, calendar_id=calendar_id)

    async def list_calendars(self, access_token: str) -> list[CalendarInfo]:
        calendars: list[CalendarInfo] = []
        page_token: str | None = None

        for _ in range(_MAX_CALENDAR_LIST_PAGES):
            params: dict[str, Any] = {}
            if page_token is not None:
                params["pageToken"] = page_token
            payload = await self._request_json(
                GOOGLE_CALENDAR_LIST_URL,
                params=params,
                access_token=access_token,
            )
            calendars.extend(_parse_google_calendar_list(payload))
            page_token = _as_non_empty_string(payload.get("nextPageToken"))
            if page_token is None:
                break

        return calendars

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request_json(
        self, url: str, *, params: dict[str, Any], access_token: str
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            response = await self._http_client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            # No response at all is reported as status 0.
            raise ProviderRequestError(
                status_code=0,
                message=f"Google Calendar request failed: {type(exc).__name__}",
            ) from exc

        def _error(message: str) -> ProviderRequestError:
            return ProviderRequestError(status_code=response.status_code, message=message)

        return _json_object(response, _error)


def _json_object(
    response: httpx.Response,
    make_error: Callable[[str], Exception],
    *,
    failure_prefix: str | None = None,
) -> dict[str, Any]:
    """Decode a 2xx JSON object body or raise ``make_error(message)``.

    Non-2xx responses carry Google's own reason, prefixed with
    ``"{failure_prefix} ({status}): "`` when a prefix is given.
    """
    if not response.is_success:
        reason = _safe_google_error_message(response)
        if failure_prefix is not None:
            reason = f"{failure_prefix} ({response.status_code}): {reason}"
        raise make_error(reason)
    try:
        payload = response.json()
    except ValueError as exc:
        raise make_error("response body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise make_error("response body must be a JSON object")
    return payload


def _format_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _squash(value: Any) -> str | None:
    """Whitespace-collapsed text capped at 200 chars, or None when empty."""
    if not isinstance(value, str) or not value.strip():
        return None
    return " ".join(value.split())[:200]


def _safe_google_error_message(response: httpx.Response) -> str:
    """Best human-readable reason from a Google error response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    candidates: list[Any] = []
    if isinstance(body, dict):
        error = body.get("error")
        # API errors nest {"error": {"message": ...}}; OAuth errors are flat.
        if isinstance(error, dict):
            candidates.append(error.get("message"))
        candidates += [body.get("error_description") or body.get("message"), error]
    candidates.append(response.text)

    for candidate in candidates:
        message = _squash(candidate)
        if message is not None:
            return message
    return "unknown error"


def _coerce_expires_in_seconds(value: Any, default: int = 3600) -> int:
    if isinstance(value, str):
        value = int(value.strip()) if value.strip().isdigit() else None
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        return default
    return int(value)


def _as_non_empty_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _parse_google_boundary(payload: Any) -> EventBoundary | None:
    if not isinstance(payload, dict):
        return None
    boundary = EventBoundary(
        date=_as_non_empty_string(payload.get("date")),
        date_time=_as_non_empty_string(payload.get("dateTime")),
        time_zone=_as_non_empty_string(payload.get("timeZone")),
    )
    if boundary.date is None and boundary.date_time is None:
        return None
    return boundary


def _parse_google_event(payload: dict[str, Any], *, calendar_id: str) -> ProviderEvent | None:
    event_id = _as_non_empty_string(payload.get("id"))
    if event_id is None:
        logger.warning("Skipping Google event without id in calendar=%s", calendar_id)
        return None

    start = _parse_google_boundary(payload.get("start"))
    if start is None:
        logger.warning(
            "Skipping Google event without start boundary id=%s calendar=%s",
            event_id,
            calendar_id,
        )
        return None

    summary = payload.get("summary")
    status = payload.get("status")
    try:
        return ProviderEvent(
            id=event_id,
            calendar_id=calendar_id,
            summary=summary if isinstance(summary, str) else None,
            status=status if isinstance(status, str) else None,
            start=start,
            end=_parse_google_boundary(payload.get("end")),
        )
    except ValidationError:
        logger.warning(
            "Skipping malformed Google event id=%s calendar=%s", event_id, calendar_id
        )
        return None


def _parse_google_events_page(payload: dict[str, Any], *, calendar_id: str) -> EventPage:
    raw_items = payload.get("items")
    events: list[ProviderEvent] = []
    if isinstance(raw_items, list):
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            parsed = _parse_google_event(item, calendar_id=calendar_id)
            if parsed is not None:
                events.append(parsed)

    return EventPage(
        events=events,
        next_page_token=_as_non_empty_string(payload.get("nextPageToken")),
    )


def _parse_google_calendar_list(payload: dict[str, Any]) -> list[CalendarInfo]:
    raw_items = payload.get("items")
    if not isinstance(raw_items, list):
        return []

    calendars: list[CalendarInfo] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        calendar_id = _as_non_empty_string(item.get("id"))
        if calendar_id is None:
            continue
        description = item.get("description")
        calendars.append(
            CalendarInfo(
                id=calendar_id,
                summary=_as_non_empty_string(item.get("summary")),
                description=description if isinstance(description, str) else None,
                primary=item.get("primary") is True,
                background_color=_as_non_empty_string(item.get("backgroundColor")),
            )
        )
    return calendars
