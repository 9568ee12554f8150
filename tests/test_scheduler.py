from __future__ import annotations

import asyncio

import pytest

from oracle_trader.runtime.clock import VirtualClock
from oracle_trader.runtime.scheduler import Scheduler


def test_run_due_follows_intervals() -> None:
    clock = VirtualClock()
    scheduler = Scheduler(clock)
    calls: list[str] = []

    async def _fast() -> None:
        calls.append("fast")

    async def _slow() -> None:
        calls.append("slow")

    scheduler.every("fast", 1.0, _fast)
    scheduler.every("slow", 5.0, _slow)

    async def _run() -> None:
        assert await scheduler.run_due() == 0
        for _ in range(5):
            clock.advance(1.0)
            await scheduler.run_due()

    asyncio.run(_run())

    assert calls.count("fast") == 5
    assert calls.count("slow") == 1


def test_registration_validated() -> None:
    scheduler = Scheduler(VirtualClock())

    async def _noop() -> None:
        return None

    scheduler.every("a", 1.0, _noop)
    with pytest.raises(ValueError):
        scheduler.every("a", 1.0, _noop)
    with pytest.raises(ValueError):
        scheduler.every("b", 0.0, _noop)


def test_cancel_stops_future_runs() -> None:
    clock = VirtualClock()
    scheduler = Scheduler(clock)
    runs = 0

    async def _tick() -> None:
        nonlocal runs
        runs += 1

    scheduler.every("tick", 1.0, _tick, run_immediately=True)
    asyncio.run(scheduler.run_due())
    assert scheduler.cancel("tick")
    assert not scheduler.cancel("tick")
    clock.advance(5.0)
    asyncio.run(scheduler.run_due())

    assert runs == 1
    assert scheduler.task_names() == []


def test_failing_callback_does_not_stop_the_loop() -> None:
    clock = VirtualClock()
    scheduler = Scheduler(clock)
    attempts = 0

    async def _boom() -> None:
        nonlocal attempts
        attempts += 1
        raise RuntimeError("venue timeout")

    task = scheduler.every("boom", 1.0, _boom)

    async def _run() -> None:
        for _ in range(3):
            clock.advance(1.0)
            await scheduler.run_due()

    asyncio.run(_run())

    assert attempts == 3
    assert task.runs == 3
    assert not task.in_flight


def test_start_and_shutdown_under_event_loop() -> None:
    clock = VirtualClock()
    scheduler = Scheduler(clock)
    runs = 0

    async def _tick() -> None:
        nonlocal runs
        runs += 1

    async def _run() -> None:
        scheduler.every("tick", 1.0, _tick)
        scheduler.start()
        for _ in range(10):
            await asyncio.sleep(0)
        await scheduler.shutdown()

    asyncio.run(_run())

    assert runs >= 1
    assert not scheduler.started
