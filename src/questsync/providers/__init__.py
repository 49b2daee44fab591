"""Calendar provider implementations."""

from questsync.providers.base import CalendarProvider, EventPage
from questsync.providers.google import GoogleCalendarProvider

__all__ = ["CalendarProvider", "EventPage", "GoogleCalendarProvider"]
