"""Tests for per-key asyncio locks."""

from __future__ import annotations

import asyncio

import pytest

from questsync.core.locks import KeyedLocks

pytestmark = pytest.mark.unit


class TestKeyedLocks:
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order: list[str] = []

        async def _critical(name: str) -> None:
            async with locks.hold("user-1"):
                order.append(f"{name}:in")
                await asyncio.sleep(0)
                order.append(f"{name}:out")

        await asyncio.gather(_critical("a"), _critical("b"))

        assert order == ["a:in", "a:out", "b:in", "b:out"]

    async def test_entry_survives_while_a_waiter_is_queued(self):
        locks = KeyedLocks()
        first_inside = asyncio.Event()
        release_first = asyncio.Event()

        async def _first() -> None:
            async with locks.hold("user-1"):
                first_inside.set()
                await release_first.wait()

        async def _second() -> bool:
            async with locks.hold("user-1"):
                return locks.in_use("user-1")

        first = asyncio.create_task(_first())
        await first_inside.wait()
        second = asyncio.create_task(_second())
        await asyncio.sleep(0)
        release_first.set()
        await first

        assert await second is True
        assert locks.in_use("user-1") is False
        assert len(locks) == 0

    async def test_entry_is_dropped_after_exception(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("user-1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
        assert locks.in_use("user-1") is False

    async def test_cancelled_waiter_is_forgotten(self):
        locks = KeyedLocks()
        release = asyncio.Event()

        async def _holder() -> None:
            async with locks.hold("user-1"):
                await release.wait()

        holder = asyncio.create_task(_holder())
        await asyncio.sleep(0)
        waiter = asyncio.create_task(_holder())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        release.set()
        await holder

        assert len(locks) == 0
