"""Translate provider events into internal date/time invariants."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from questsync.models import EntityKind, ImportMode, NormalizedEvent, ProviderEvent

logger = logging.getLogger(__name__)

_LATEST_END = time(23, 59)


def resolve_timezone(timezone: str | None) -> tzinfo:
    """Return the IANA zone for *timezone*, falling back to UTC."""
    name = (timezone or "").strip()
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to UTC", name)
        return UTC


def _parse_provider_datetime(value: str, *, fallback_zone: tzinfo) -> datetime:
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Calendar provider returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=fallback_zone)


def _parse_provider_date(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Calendar provider returned an invalid date value: {value}") from exc


def synthesize_time_range(start: time, end: time | None = None) -> tuple[time, time]:
    """Return a non-empty ``(start, end)`` pair on a single day.

    When *end* is missing or not after *start*, the end becomes one hour
    after the start with the hour clamped at 23. Starts in the 23:00 hour
    end at 23:59; a start of exactly 23:59 moves to 23:58.
    """
    if end is not None and end > start:
        return start, end

    candidate = time(min(start.hour + 1, 23), start.minute)
    if candidate > start:
        return start, candidate
    if start >= _LATEST_END:
        return time(23, 58), _LATEST_END
    return start, _LATEST_END


def normalize_event(event: ProviderEvent, timezone: str | None = "UTC") -> NormalizedEvent:
    """Normalize *event* into the caller's *timezone*.

    All-day events keep the provider's civil date verbatim and carry no
    times. Timed events are converted to wall-clock ``HH:MM`` in the
    caller's zone, with a synthesized end when the provider's end is
    missing or not after the start.
    """
    title = event.title
    if title is None:
        raise ValueError(f"Event {event.id} has no title")

    if event.start.date is None and event.start.date_time is None:
        raise ValueError(f"Event {event.id} has neither a start date nor dateTime")

    if event.is_all_day:
        return NormalizedEvent(
            event_id=event.id,
            calendar_id=event.calendar_id,
            title=title,
            event_date=_parse_provider_date(event.start.date),
            all_day=True,
        )

    zone = resolve_timezone(timezone)
    start_zone = resolve_timezone(event.start.time_zone) if event.start.time_zone else UTC
    start_local = _parse_provider_datetime(
        event.start.date_time, fallback_zone=start_zone
    ).astimezone(zone)

    end_time: time | None = None
    if event.end is not None and event.end.date_time is not None:
        end_zone = resolve_timezone(event.end.time_zone) if event.end.time_zone else start_zone
        end_local = _parse_provider_datetime(
            event.end.date_time, fallback_zone=end_zone
        ).astimezone(zone)
        # Ends on a later day cannot be represented on a single-day entry.
        if end_local.date() == start_local.date():
            end_time = time(end_local.hour, end_local.minute)

    start_time, end_time = synthesize_time_range(
        time(start_local.hour, start_local.minute), end_time
    )
    return NormalizedEvent(
        event_id=event.id,
        calendar_id=event.calendar_id,
        title=title,
        event_date=start_local.date(),
        start_time=start_time,
        end_time=end_time,
        all_day=False,
    )


def resolve_destination(import_as: ImportMode | str, all_day: bool) -> EntityKind:
    """Pick the entity kind an event becomes under *import_as*."""
    mode = ImportMode(import_as)
    if mode is ImportMode.TASKS:
        return EntityKind.TASK
    if mode is ImportMode.SCHEDULE:
        return EntityKind.SCHEDULE_ENTRY
    return EntityKind.TASK if all_day else EntityKind.SCHEDULE_ENTRY
