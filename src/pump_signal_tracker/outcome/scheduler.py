"""Deferred per-token re-check scheduler."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta

logger = logging.getLogger(__name__)

CheckFn = Callable[[str], Awaitable[object]]


class RecheckScheduler:
    """Runs `check(mint)` after a delay on the running event loop.

    The scheduler only owns timers. Checks must treat a token or alert
    record that no longer exists as a no-op, so timers are never cancelled
    on eviction. Errors raised by a check are logged and swallowed.
    """

    def __init__(self) -> None:
        self._counter = itertools.count()
        self._handles: dict[int, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        """Timers that have not fired yet."""
        return len(self._handles)

    @property
    def running_count(self) -> int:
        return len(self._tasks)

    def schedule(self, delay: float | timedelta, mint: str, check: CheckFn) -> None:
        """Run `check(mint)` after `delay` seconds."""
        seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
        loop = asyncio.get_running_loop()
        key = next(self._counter)
        self._handles[key] = loop.call_later(max(seconds, 0.0), self._fire, key, mint, check)

    def schedule_many(self, delays: Iterable[float | timedelta], mint: str, check: CheckFn) -> int:
        count = 0
        for delay in delays:
            self.schedule(delay, mint, check)
            count += 1
        return count

    def _fire(self, key: int, mint: str, check: CheckFn) -> None:
        self._handles.pop(key, None)
        task = asyncio.get_running_loop().create_task(self._run(mint, check))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, mint: str, check: CheckFn) -> None:
        try:
            await check(mint)
        except Exception as e:
            logger.exception("Scheduled check for %s failed: %s", mint, e)

    def cancel_all(self) -> int:
        """Cancel every pending timer and running check. Returns timers cancelled."""
        cancelled = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        for task in list(self._tasks):
            task.cancel()
        return cancelled

    async def drain(self) -> None:
        """Wait for checks that are already running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
