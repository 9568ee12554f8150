"""Cancellable periodic task registry.

Each loop is registered under a name with an interval. Under a running event
loop ``start()`` drives every task on its own asyncio task; in tests the same
registry is driven by ``run_due()`` after advancing a ``VirtualClock``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from oracle_trader.runtime.clock import Clock
from oracle_trader.utils.logging import get_logger

TaskCallback = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class ScheduledTask:
    """One registered periodic callback."""

    name: str
    interval: float
    callback: TaskCallback
    next_run: float
    runs: int = 0
    in_flight: bool = False
    handle: asyncio.Task[None] | None = None


class Scheduler:
    """Registry of named periodic tasks sharing one clock."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._tasks: dict[str, ScheduledTask] = {}
        self._started = False
        self._logger = get_logger("oracle_trader.runtime.scheduler")

    @property
    def started(self) -> bool:
        return self._started

    def every(
        self,
        name: str,
        interval: float,
        callback: TaskCallback,
        *,
        run_immediately: bool = False,
    ) -> ScheduledTask:
        """Register ``callback`` to run every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("interval_must_be_positive")
        if name in self._tasks:
            raise ValueError(f"task_already_registered: {name}")
        first_run = self._clock.now() if run_immediately else self._clock.now() + interval
        task = ScheduledTask(name=name, interval=interval, callback=callback, next_run=first_run)
        self._tasks[name] = task
        if self._started:
            task.handle = asyncio.create_task(self._drive(task), name=name)
        return task

    def start(self) -> None:
        """Spawn a driver for every registered task. Needs a running loop."""
        if self._started:
            return
        self._started = True
        for task in self._tasks.values():
            if task.handle is None:
                task.handle = asyncio.create_task(self._drive(task), name=task.name)

    def cancel(self, name: str) -> bool:
        """Stop one task; in-flight callbacks finish, none are rescheduled."""
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        if task.handle is not None and not task.handle.done() and not task.in_flight:
            task.handle.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every task and wait for the drivers to exit."""
        handles = [t.handle for t in self._tasks.values() if t.handle is not None]
        for name in list(self._tasks):
            self.cancel(name)
        if handles:
            await asyncio.gather(*handles, return_exceptions=True)
        self._started = False

    def task_names(self) -> list[str]:
        return list(self._tasks)

    async def run_due(self) -> int:
        """Run every task whose next run time has passed. Returns how many ran."""
        now = self._clock.now()
        due = [t for t in self._tasks.values() if t.next_run <= now]
        for task in sorted(due, key=lambda t: t.next_run):
            if task.name not in self._tasks:
                continue
            await self._fire(task)
        return len(due)

    async def _drive(self, task: ScheduledTask) -> None:
        try:
            while task.name in self._tasks:
                await self._clock.sleep(task.next_run - self._clock.now())
                if task.name not in self._tasks:
                    break
                await self._fire(task)
        except asyncio.CancelledError:
            pass

    async def _fire(self, task: ScheduledTask) -> None:
        task.next_run = self._clock.now() + task.interval
        task.runs += 1
        task.in_flight = True
        try:
            await task.callback()
        except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
            self._logger.exception("scheduled_task_failed", task=task.name, error=str(exc))
        finally:
            task.in_flight = False
