"""Tests for shared domain models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from pydantic import ValidationError

from questsync.errors import FetchFailedError, NoConnectionError, RunFatalError
from questsync.models import Connection, ProviderEvent, SyncResult, TokenGrant
from questsync.testing import make_event

pytestmark = pytest.mark.unit


class TestConnection:
    def test_repr_hides_tokens(self):
        connection = Connection(
            id=uuid4(),
            user_id=uuid4(),
            access_token="ya29.secret",
            refresh_token="1//secret",
            token_expires_at=datetime(2026, 3, 9, tzinfo=UTC),
        )
        assert "secret" not in repr(connection)
        assert "secret" not in str(connection)

    def test_calendar_selection_is_trimmed_and_deduplicated(self):
        connection = Connection(
            id=uuid4(),
            user_id=uuid4(),
            access_token="tok",
            token_expires_at=datetime(2026, 3, 9, tzinfo=UTC),
            selected_calendars=[" primary", "team", "primary", ""],
            refresh_token="  ",
        )
        assert connection.selected_calendars == ["primary", "team"]
        assert connection.refresh_token is None


class TestTokenGrant:
    def test_non_positive_expiry_defaults_to_an_hour(self):
        assert TokenGrant(access_token="tok", expires_in=0).expires_in == 3600

    def test_blank_access_token_is_invalid(self):
        with pytest.raises(ValidationError):
            TokenGrant(access_token="   ")


class TestProviderEvent:
    def test_cancelled_status_is_case_insensitive(self):
        assert make_event("evt", status="Cancelled").is_cancelled is True
        assert make_event("evt", status=None).is_cancelled is False

    def test_all_day_detection(self):
        assert make_event("evt", start="2026-03-12", end=None, all_day=True).is_all_day is True
        assert make_event("evt").is_all_day is False

    def test_empty_id_is_rejected(self):
        with pytest.raises(ValidationError):
            ProviderEvent(id="", calendar_id="primary", start={"date": "2026-03-12"})


class TestSyncResult:
    def test_serializes_with_wire_names(self):
        result = SyncResult(tasks_created=1, schedule_entries_updated=2, errors=["x"])

        payload = result.model_dump(by_alias=True)

        assert payload == {
            "tasksCreated": 1,
            "tasksUpdated": 0,
            "scheduleBlocksCreated": 0,
            "scheduleBlocksUpdated": 2,
            "eventsProcessed": 0,
            "eventsSkipped": 0,
            "calendarsProcessed": 0,
            "errors": ["x"],
            "lastSyncedAt": None,
        }
        assert result.created == 1
        assert result.updated == 2

    def test_accepts_wire_names(self):
        assert SyncResult.model_validate({"tasksCreated": 3}).tasks_created == 3


class TestErrors:
    def test_fetch_failed_message_with_reason(self):
        assert str(FetchFailedError("team", reason="TimeoutError")) == (
            "Failed to fetch calendar: team (TimeoutError)"
        )

    def test_no_connection_is_run_fatal(self):
        error = NoConnectionError(user_id=uuid4(), provider="google")
        assert isinstance(error, RunFatalError)
        assert str(error) == "No google calendar connection found"
