"""Local countdown from a scheduled start time to zero."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
import inspect
import logging
import math

from group_quiz.constants.session_constants import COUNTDOWN_TICK_MS
from group_quiz.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ElapsedCallback = Callable[[], "Awaitable[None] | None"]
TickCallback = Callable[[int], None]


class CountdownSynchronizer:
    """Counts down to ``scheduled_at`` on this client's own clock.

    Every client runs its own instance; no server time is consulted, so
    clock skew between clients is accepted. The remaining time is
    re-evaluated once per tick, never goes below zero, and the elapsed
    callback fires exactly once. A start time already in the past fires
    on the first evaluation. After :meth:`cancel` nothing fires.
    """

    def __init__(
        self,
        scheduled_at: datetime,
        on_elapsed: ElapsedCallback,
        on_tick: TickCallback | None = None,
        clock: Callable[[], datetime] = utc_now,
        tick_seconds: float = COUNTDOWN_TICK_MS / 1000.0,
    ) -> None:
        if tick_seconds <= 0:
            raise ValueError("Countdown tick must be positive.")
        self._scheduled_at = ensure_utc(scheduled_at)
        self._on_elapsed = on_elapsed
        self._on_tick = on_tick
        self._clock = clock
        self._tick_seconds = tick_seconds
        self._elapsed: bool = False
        self._cancelled: bool = False
        self._task: asyncio.Task[None] | None = None

    @property
    def scheduled_at(self) -> datetime:
        return self._scheduled_at

    @property
    def elapsed(self) -> bool:
        return self._elapsed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def remaining_exact(self) -> float:
        delta = (self._scheduled_at - ensure_utc(self._clock())).total_seconds()
        return max(0.0, delta)

    def seconds_remaining(self) -> int:
        """Whole seconds left, rounded up so zero means the start time has passed."""
        return math.ceil(self.remaining_exact())

    async def check(self) -> int:
        """Evaluate the countdown once, firing the elapsed signal when it reaches zero."""
        if self._cancelled:
            return self.seconds_remaining()
        remaining = self.seconds_remaining()
        if self._on_tick is not None:
            self._on_tick(remaining)
        if remaining == 0 and not self._elapsed:
            self._elapsed = True
            logger.info("Countdown to %s elapsed", self._scheduled_at.isoformat())
            outcome = self._on_elapsed()
            if inspect.isawaitable(outcome):
                await outcome
        return remaining

    def start(self) -> asyncio.Task[None]:
        """Run the countdown as a task on the current event loop."""
        if self._cancelled:
            raise RuntimeError("Countdown was cancelled.")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="session-countdown")
        return self._task

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("Countdown to %s cancelled", self._scheduled_at.isoformat())

    async def wait(self) -> None:
        """Wait for the running countdown to finish or be cancelled."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancelled:
                raise

    async def _run(self) -> None:
        while not self._cancelled:
            await self.check()
            if self._elapsed:
                return
            # Sleep at most one tick, and never past the scheduled instant.
            await asyncio.sleep(min(self._tick_seconds, max(self.remaining_exact(), 0.001)))
