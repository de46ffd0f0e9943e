from __future__ import annotations

import asyncio

import pytest

from pyespresense._scheduler import AsyncioScheduler


@pytest.mark.asyncio
async def test_after_runs_callback_once() -> None:
    scheduler = AsyncioScheduler(asyncio.get_running_loop())
    calls: list[str] = []

    scheduler.after(0.01, lambda: calls.append("fired"))
    await asyncio.sleep(0.05)

    assert calls == ["fired"]


@pytest.mark.asyncio
async def test_cancelled_timer_does_not_fire() -> None:
    scheduler = AsyncioScheduler(asyncio.get_running_loop())
    calls: list[str] = []

    handle = scheduler.after(0.01, lambda: calls.append("fired"))
    scheduler.cancel(handle)
    scheduler.cancel(None)
    await asyncio.sleep(0.05)

    assert calls == []


@pytest.mark.asyncio
async def test_every_repeats_until_cancelled() -> None:
    scheduler = AsyncioScheduler(asyncio.get_running_loop())
    calls: list[int] = []

    handle = scheduler.every(0.01, lambda: calls.append(len(calls)))
    await asyncio.sleep(0.1)
    scheduler.cancel(handle)
    fired = len(calls)
    await asyncio.sleep(0.05)

    assert fired >= 2
    assert len(calls) == fired


@pytest.mark.asyncio
async def test_failing_repeating_callback_keeps_running() -> None:
    scheduler = AsyncioScheduler(asyncio.get_running_loop())
    calls: list[int] = []

    def flaky() -> None:
        calls.append(1)
        raise RuntimeError("sweep failed")

    handle = scheduler.every(0.01, flaky)
    await asyncio.sleep(0.1)
    scheduler.cancel(handle)

    assert len(calls) >= 2


def test_every_rejects_non_positive_interval() -> None:
    loop = asyncio.new_event_loop()
    try:
        with pytest.raises(ValueError):
            AsyncioScheduler(loop).every(0, lambda: None)
    finally:
        loop.close()
