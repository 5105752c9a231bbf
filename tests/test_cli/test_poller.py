"""Tests for the fixed-interval server poller."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from cli.poller import ServerPoller


@pytest.fixture
async def poller() -> AsyncIterator[ServerPoller]:
    p = ServerPoller()
    yield p
    await p.aclose()


class TestServerPoller:
    async def test_ticks_repeatedly(self, poller: ServerPoller) -> None:
        ticks: list[int] = []

        async def on_poll() -> None:
            ticks.append(1)

        poller.start(0.05, on_poll)
        await asyncio.sleep(0.13)

        assert len(ticks) >= 2
        assert poller.is_running

    async def test_stop_halts_ticks(self, poller: ServerPoller) -> None:
        ticks: list[int] = []

        async def on_poll() -> None:
            ticks.append(1)

        poller.start(0.02, on_poll)
        await asyncio.sleep(0.07)
        poller.stop()
        seen = len(ticks)
        await asyncio.sleep(0.1)

        assert len(ticks) == seen
        assert not poller.is_running

    async def test_stop_is_idempotent(self, poller: ServerPoller) -> None:
        poller.stop()
        poller.stop()
        assert not poller.is_running

    async def test_failing_tick_does_not_stop_loop(self, poller: ServerPoller) -> None:
        ticks: list[int] = []

        async def on_poll() -> None:
            ticks.append(1)
            raise RuntimeError("server down")

        poller.start(0.02, on_poll)
        await asyncio.sleep(0.15)

        assert len(ticks) >= 2
        assert poller.is_running

    async def test_restart_replaces_previous_loop(self, poller: ServerPoller) -> None:
        first: list[int] = []
        second: list[int] = []

        async def on_first() -> None:
            first.append(1)

        async def on_second() -> None:
            second.append(1)

        poller.start(0.02, on_first)
        await asyncio.sleep(0.05)
        poller.start(0.02, on_second)
        stale = len(first)
        await asyncio.sleep(0.1)

        assert len(first) == stale
        assert len(second) >= 2

    @pytest.mark.parametrize("interval", [0, -1])
    async def test_rejects_non_positive_interval(
        self, poller: ServerPoller, interval: float
    ) -> None:
        async def on_poll() -> None:
            return None

        with pytest.raises(ValueError, match="positive"):
            poller.start(interval, on_poll)
