"""Error taxonomy for calendar sync runs.

Errors are grouped by blast radius:

- run-fatal (``NoConnectionError``, ``NoCalendarsSelectedError``,
  ``TokenUnavailableError``) abort a run before any event-list call
- calendar-scoped (``FetchFailedError``) skip one calendar
- event-scoped (``DestinationUnavailableError``, ``EntityWriteError``) skip
  one event
"""

from __future__ import annotations


class CalendarSyncError(RuntimeError):
    """Base calendar sync error."""


class RunFatalError(CalendarSyncError):
    """Configuration or credential error that aborts a whole run."""


class NoConnectionError(RunFatalError):
    """Raised when the user has no provider connection."""

    def __init__(self, *, user_id: object, provider: str) -> None:
        self.user_id = user_id
        self.provider = provider
        super().__init__(f"No {provider} calendar connection found")


class NoCalendarsSelectedError(RunFatalError):
    """Raised when a connection has an empty calendar selection."""

    def __init__(self) -> None:
        super().__init__("No calendars selected for sync")


class TokenUnavailableError(RunFatalError):
    """Raised when no usable access token can be produced for a connection."""


class ProviderRequestError(CalendarSyncError):
    """Raised when a provider API request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Calendar provider request failed ({status_code}): {message}")


class TokenRefreshError(CalendarSyncError):
    """Raised when the refresh-token exchange fails."""


class FetchFailedError(CalendarSyncError):
    """Raised when events for one calendar cannot be fetched."""

    def __init__(self, calendar_id: str, *, reason: str | None = None) -> None:
        self.calendar_id = calendar_id
        self.reason = reason
        message = f"Failed to fetch calendar: {calendar_id}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class EventScopedError(CalendarSyncError):
    """Failure confined to a single event; the run continues."""


class DestinationUnavailableError(EventScopedError):
    """Raised when a task import has no destination quest."""


class EntityWriteError(EventScopedError):
    """Raised when creating or updating an imported entity fails."""
