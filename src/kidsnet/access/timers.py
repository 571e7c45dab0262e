"""Timed-allow timers — at most one pending deferred re-block per subject.

A DelayedTask is a cancellable one-shot callback on the running event loop.
Starting a timer for a subject cancels the previous one before scheduling,
so two deferred actions for the same subject are never in flight.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class DelayedTask:
    """Run an async callback once after a delay, unless cancelled first.

    Args:
        delay: Seconds to wait before firing.
        callback: Coroutine function invoked with no arguments.
        sleep: Awaitable sleep used for the delay (injectable for tests).
        name: Task name for debugging.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        *,
        sleep: Sleep = asyncio.sleep,
        name: str | None = None,
    ) -> None:
        self._callback = callback
        self._sleep = sleep
        self._task = asyncio.create_task(self._run(delay), name=name)

    async def _run(self, delay: float) -> None:
        await self._sleep(delay)
        try:
            await self._callback()
        except Exception:
            await logger.aerror("delayed_task_failed", task=self._task.get_name(), exc_info=True)

    def cancel(self) -> None:
        """Cancel the task if it has not fired yet."""
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def task(self) -> asyncio.Task[None]:
        return self._task


@dataclass
class Timer:
    """A pending timed-allow for one subject."""

    tracker: int
    subject_name: str
    fires_at: datetime
    handle: DelayedTask | None = field(default=None, repr=False)


class TimerRegistry:
    """Memory-resident timers keyed by subject tracker.

    Args:
        sleep: Awaitable sleep passed to every DelayedTask.
    """

    def __init__(self, sleep: Sleep = asyncio.sleep) -> None:
        self._sleep = sleep
        self._timers: dict[int, Timer] = {}

    def __len__(self) -> int:
        return len(self._timers)

    def start(
        self,
        tracker: int,
        subject_name: str,
        fires_at: datetime,
        delay: float,
        on_fire: Callable[[Timer], Awaitable[None]],
    ) -> Timer:
        """Supersede any existing timer for the subject and schedule a new one."""
        self.cancel(tracker)
        timer = Timer(tracker=tracker, subject_name=subject_name, fires_at=fires_at)
        timer.handle = DelayedTask(
            delay,
            lambda: on_fire(timer),
            sleep=self._sleep,
            name=f"timer-{tracker}",
        )
        self._timers[tracker] = timer
        return timer

    def cancel(self, tracker: int) -> Timer | None:
        """Cancel and remove a subject's timer. Returns the removed timer, if any."""
        timer = self._timers.pop(tracker, None)
        if timer is not None and timer.handle is not None:
            timer.handle.cancel()
        return timer

    def discard(self, timer: Timer) -> bool:
        """Remove a fired timer's record, unless a newer timer already replaced it."""
        if self._timers.get(timer.tracker) is timer:
            del self._timers[timer.tracker]
            return True
        return False

    def get(self, tracker: int) -> Timer | None:
        return self._timers.get(tracker)

    def is_active(self, tracker: int) -> bool:
        return tracker in self._timers

    def cancel_all(self) -> list[Timer]:
        """Cancel every pending timer (shutdown, block-all)."""
        cancelled: list[Timer] = []
        for tracker in list(self._timers):
            timer = self.cancel(tracker)
            if timer is not None:
                cancelled.append(timer)
        return cancelled
