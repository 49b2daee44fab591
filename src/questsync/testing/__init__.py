"""Test support utilities for the questsync package.

In-memory stand-ins for the persistence and provider seams. They have no
dependency on pytest so they can be imported from any test context.
"""

from __future__ import annotations

from questsync.testing.doubles import (
    FakeCalendarProvider,
    InMemorySyncStore,
    make_connection,
    make_event,
)

__all__ = ["FakeCalendarProvider", "InMemorySyncStore", "make_connection", "make_event"]
