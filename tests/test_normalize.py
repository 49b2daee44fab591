"""Unit tests for event normalization and destination routing."""

from __future__ import annotations

import logging
from datetime import UTC, date, time

import pytest

from questsync.models import EntityKind, EventBoundary, ImportMode, ProviderEvent
from questsync.normalize import (
    normalize_event,
    resolve_destination,
    resolve_timezone,
    synthesize_time_range,
)
from questsync.testing import make_event

pytestmark = pytest.mark.unit


class TestSynthesizeTimeRange:
    @pytest.mark.parametrize(
        ("start", "end", "expected"),
        [
            (time(9, 0), None, (time(9, 0), time(10, 0))),
            (time(9, 30), None, (time(9, 30), time(10, 30))),
            (time(9, 0), time(9, 45), (time(9, 0), time(9, 45))),
            (time(9, 0), time(9, 0), (time(9, 0), time(10, 0))),
            (time(9, 0), time(8, 0), (time(9, 0), time(10, 0))),
            (time(22, 30), None, (time(22, 30), time(23, 30))),
            (time(23, 0), None, (time(23, 0), time(23, 59))),
            (time(23, 15), None, (time(23, 15), time(23, 59))),
            (time(23, 59), None, (time(23, 58), time(23, 59))),
        ],
    )
    def test_range(self, start, end, expected):
        assert synthesize_time_range(start, end) == expected

    @pytest.mark.parametrize("minute", range(0, 60, 7))
    def test_late_starts_always_end_after_start(self, minute):
        start, end = synthesize_time_range(time(23, minute))
        assert end > start


class TestResolveTimezone:
    def test_known_zone(self):
        assert str(resolve_timezone("Asia/Tokyo")) == "Asia/Tokyo"

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_blank_is_utc(self, name):
        assert resolve_timezone(name) is UTC

    def test_unknown_zone_falls_back_to_utc(self, caplog):
        with caplog.at_level(logging.WARNING, logger="questsync.normalize"):
            assert resolve_timezone("Mars/Olympus_Mons") is UTC
        assert "Mars/Olympus_Mons" in caplog.text


class TestNormalizeEvent:
    def test_timed_event_in_utc(self):
        normalized = normalize_event(make_event("evt", "Standup"), "UTC")

        assert normalized.title == "Standup"
        assert normalized.event_date == date(2026, 3, 10)
        assert normalized.start_time == time(9, 0)
        assert normalized.end_time == time(10, 0)
        assert normalized.all_day is False

    def test_timed_event_converted_to_callers_zone(self):
        event = make_event("evt", start="2026-03-10T20:00:00Z", end="2026-03-10T21:15:00Z")

        normalized = normalize_event(event, "Asia/Tokyo")

        assert normalized.event_date == date(2026, 3, 11)
        assert normalized.start_time == time(5, 0)
        assert normalized.end_time == time(6, 15)

    def test_offset_datetime_is_honoured(self):
        event = make_event("evt", start="2026-03-10T09:00:00-05:00", end=None)

        normalized = normalize_event(event, "UTC")

        assert normalized.start_time == time(14, 0)
        assert normalized.end_time == time(15, 0)

    def test_naive_datetime_uses_event_zone(self):
        event = ProviderEvent(
            id="evt",
            calendar_id="primary",
            summary="Paris meeting",
            start=EventBoundary(date_time="2026-03-10T09:00:00", time_zone="Europe/Paris"),
            end=EventBoundary(date_time="2026-03-10T10:00:00", time_zone="Europe/Paris"),
        )

        normalized = normalize_event(event, "UTC")

        assert normalized.start_time == time(8, 0)
        assert normalized.end_time == time(9, 0)

    def test_seconds_are_dropped(self):
        event = make_event("evt", start="2026-03-10T09:00:45Z", end="2026-03-10T09:30:59Z")

        normalized = normalize_event(event)

        assert normalized.start_time == time(9, 0)
        assert normalized.end_time == time(9, 30)

    def test_missing_end_is_synthesized(self):
        normalized = normalize_event(make_event("evt", start="2026-03-10T23:20:00Z", end=None))

        assert normalized.start_time == time(23, 20)
        assert normalized.end_time == time(23, 59)

    def test_end_on_later_day_is_synthesized(self):
        event = make_event("evt", start="2026-03-10T22:30:00Z", end="2026-03-11T01:00:00Z")

        normalized = normalize_event(event, "UTC")

        assert normalized.event_date == date(2026, 3, 10)
        assert normalized.start_time == time(22, 30)
        assert normalized.end_time == time(23, 30)

    @pytest.mark.parametrize("zone", ["UTC", "Pacific/Honolulu", "Pacific/Kiritimati"])
    def test_all_day_date_is_never_shifted(self, zone):
        event = make_event("holiday", "Holiday", start="2026-03-12", end="2026-03-13", all_day=True)

        normalized = normalize_event(event, zone)

        assert normalized.all_day is True
        assert normalized.event_date == date(2026, 3, 12)
        assert normalized.start_time is None
        assert normalized.end_time is None

    def test_title_is_trimmed(self):
        assert normalize_event(make_event("evt", "  Focus  ")).title == "Focus"

    def test_untitled_event_is_rejected(self):
        with pytest.raises(ValueError, match="no title"):
            normalize_event(make_event("evt", "   "))

    def test_event_without_start_boundary_is_rejected(self):
        event = ProviderEvent(
            id="evt", calendar_id="primary", summary="Floating", start=EventBoundary()
        )
        with pytest.raises(ValueError, match="neither a start date nor dateTime"):
            normalize_event(event)

    def test_invalid_datetime_is_rejected(self):
        with pytest.raises(ValueError, match="invalid dateTime"):
            normalize_event(make_event("evt", start="tomorrow morning"))


class TestResolveDestination:
    @pytest.mark.parametrize(
        ("mode", "all_day", "expected"),
        [
            (ImportMode.TASKS, True, EntityKind.TASK),
            (ImportMode.TASKS, False, EntityKind.TASK),
            (ImportMode.SCHEDULE, True, EntityKind.SCHEDULE_ENTRY),
            (ImportMode.SCHEDULE, False, EntityKind.SCHEDULE_ENTRY),
            (ImportMode.SMART, True, EntityKind.TASK),
            (ImportMode.SMART, False, EntityKind.SCHEDULE_ENTRY),
        ],
    )
    def test_matrix(self, mode, all_day, expected):
        assert resolve_destination(mode, all_day) is expected

    def test_accepts_plain_strings(self):
        assert resolve_destination("smart", False) is EntityKind.SCHEDULE_ENTRY
