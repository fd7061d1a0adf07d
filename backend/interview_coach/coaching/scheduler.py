from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger("coaching.scheduler")

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledCall:
    """Cancellation token for one delayed callback.

    A call is either cancelled or fired, never both. ``cancel()`` after the call
    fired returns False and changes nothing.
    """

    def __init__(self, when: float, name: str | None = None):
        self.when = float(when)
        self.name = str(name or "call")
        self._cancelled = False
        self._fired = False
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not self._cancelled and not self._fired

    def cancel(self) -> bool:
        if not self.pending:
            return False
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def _mark_fired(self) -> bool:
        if not self.pending:
            return False
        self._fired = True
        return True


class Scheduler(Protocol):
    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: AsyncCallback, name: str | None = None) -> ScheduledCall:
        ...

    async def shutdown(self) -> None:
        ...


class AsyncioScheduler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return float(self._clock())

    def call_later(self, delay: float, callback: AsyncCallback, name: str | None = None) -> ScheduledCall:
        delay = max(0.0, float(delay or 0.0))
        handle = ScheduledCall(self.now() + delay, name=name)

        async def _run() -> None:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return
            if not handle._mark_fired():
                return
            try:
                await callback()
            except Exception as exc:
                logger.error("scheduled call %s failed: %s", handle.name, exc)

        task = asyncio.create_task(_run())
        handle._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
