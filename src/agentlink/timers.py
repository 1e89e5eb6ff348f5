"""Cancellable countdowns driven by the running event loop.

A Countdown records a ``marker`` when it is created: the status or caller
the countdown was started for.  The owner compares that marker against
live state when ``on_expire`` fires and only transitions if nothing has
moved underneath the timer in the meantime.
"""

import asyncio
import logging
from typing import Any, Callable

from agentlink.states import TimerCategory

logger = logging.getLogger(__name__)


class Countdown:
    def __init__(
        self,
        category: TimerCategory,
        seconds: int,
        marker: Any,
        on_expire: Callable[["Countdown"], None],
        *,
        tick: float = 1.0,
        on_tick: Callable[["Countdown"], None] | None = None,
    ):
        self.category = category
        self.remaining = max(0, int(seconds))
        self.marker = marker
        self.tick = tick
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "Countdown":
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("%s countdown started: %ds", self.category.value, self.remaining)
        return self

    def cancel(self) -> None:
        self.remaining = 0
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("%s countdown cancelled", self.category.value)
        self._task = None

    async def _run(self):
        # Always waits at least one tick, like a 1 Hz interval.
        while True:
            await asyncio.sleep(self.tick)
            self.remaining -= 1
            if self.remaining <= 0:
                break
            if self._on_tick:
                self._on_tick(self)
        self.remaining = 0
        self._task = None
        logger.debug("%s countdown expired", self.category.value)
        self._on_expire(self)
