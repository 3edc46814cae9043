"""
Reset Scheduler - Returns the terminal to the first step after a sale.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from pos_terminal.core.value_objects import ChargeOutcome, Timing
from pos_terminal.loggers import logger


class ResetScheduler:
    """
    Delayed automatic reset after a terminal outcome.

    Disabled schedulers do nothing; the operator resets by hand. A
    pending reset is invalidated by ``cancel()`` through a generation
    counter, so it never fires after a manual reset.
    """

    def __init__(
        self,
        reset: Callable[[], None],
        timing: Optional[Timing] = None,
        enabled: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._reset = reset
        self._timing = timing or Timing()
        self._enabled = enabled
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value
        if not value:
            self.cancel()

    @property
    def is_pending(self) -> bool:
        """Check if an automatic reset is waiting to fire."""
        return self._task is not None and not self._task.done()

    def schedule(self, outcome: ChargeOutcome) -> Optional[asyncio.Task]:
        """
        Schedule a reset for a terminal outcome.

        Returns:
            The delay task, or None when auto-reset is disabled.
        """
        if not self._enabled:
            return None

        self._generation += 1
        delay = self._timing.reset_delay_for(outcome)
        logger.debug(f"Auto-reset in {delay:.1f}s ({outcome.kind.value})")
        self._task = asyncio.create_task(self._fire_after(delay, self._generation))
        return self._task

    def cancel(self) -> None:
        """Invalidate any pending reset."""
        self._generation += 1

    async def _fire_after(self, delay: float, generation: int) -> None:
        await self._sleep(delay)
        if generation != self._generation:
            return
        self._reset()
