"""
Task Scheduler - fire-once, cancellable delayed tasks for the combo resolver
"""

import asyncio
import itertools
import time
from typing import Callable, Optional

from giftwheel.utils.logger import get_logger

logger = get_logger(__name__)


class TaskHandle:
    """Handle returned by ``TaskScheduler.schedule``.

    A handle runs its callback at most once. Once cancelled it never runs, even
    when the underlying timer has already been queued on the loop.
    """

    _ids = itertools.count(1)

    def __init__(self, callback: Callable[[], None], due_at: float) -> None:
        self.task_id = next(self._ids)
        self.callback = callback
        self.due_at = due_at
        self.cancelled = False
        self.fired = False
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> None:
        if not self.active:
            return
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def run(self) -> None:
        """Execute the callback unless the handle was cancelled or already ran."""
        if not self.active:
            return
        self.fired = True
        self._timer = None
        try:
            self.callback()
        except Exception:
            logger.exception("Scheduled task %s failed", self.task_id)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"<TaskHandle #{self.task_id} due_at={self.due_at:.0f} {state}>"


class TaskScheduler:
    """Clock plus delayed-task queue used by the combo resolver.

    Times are milliseconds on the scheduler's own clock.
    """

    def now(self) -> float:
        raise NotImplementedError

    def schedule(self, delay_ms: float, fn: Callable[[], None]) -> TaskHandle:
        raise NotImplementedError

    def cancel(self, handle: Optional[TaskHandle]) -> None:
        if handle is not None:
            handle.cancel()


class AsyncioTaskScheduler(TaskScheduler):
    """Runs delayed tasks on an asyncio event loop via ``loop.call_later``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def schedule(self, delay_ms: float, fn: Callable[[], None]) -> TaskHandle:
        loop = self._loop or asyncio.get_running_loop()
        delay_ms = max(0.0, float(delay_ms))
        handle = TaskHandle(fn, self.now() + delay_ms)
        handle._timer = loop.call_later(delay_ms / 1000.0, handle.run)
        logger.debug("Scheduled task %s in %.0f ms", handle.task_id, delay_ms)
        return handle
