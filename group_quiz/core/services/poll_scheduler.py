"""Background refresh loop whose interval follows the local user's presence."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any

from group_quiz.core.errors import GroupQuizError

logger = logging.getLogger(__name__)


class PollScheduler:
    """Calls ``refresh`` every ``interval()`` seconds until stopped.

    ``interval`` is re-read before every wait, so the cadence adapts as soon
    as the local user joins or leaves; ``None`` pauses polling until
    :meth:`wake` is called. :meth:`refresh_now` is the on-demand path for
    UI-triggered refreshes and ignores the interval entirely.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        interval: Callable[[], float | None],
        manual_refresh_enabled: bool = True,
        name: str = "participants-poll",
    ) -> None:
        self._refresh = refresh
        self._interval = interval
        self._manual_refresh_enabled = manual_refresh_enabled
        self._name = name
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopped: bool = False
        self.poll_count: int = 0
        self.failure_count: int = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("Poll scheduler was stopped.")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self._name)

    def wake(self) -> None:
        """Re-evaluate the interval now, e.g. after the local user joined."""
        self._wake.set()

    async def stop(self) -> None:
        self._stopped = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def refresh_now(self) -> Any:
        """Refresh immediately and restart the interval timer."""
        if not self._manual_refresh_enabled:
            raise RuntimeError("Manual refresh is disabled.")
        result = await self._refresh()
        self._wake.set()
        return result

    async def _run(self) -> None:
        while not self._stopped:
            interval = self._interval()
            self._wake.clear()
            if interval is None:
                await self._wake.wait()
                continue
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
                continue
            except asyncio.TimeoutError:
                pass
            await self._poll_once()

    async def _poll_once(self) -> None:
        self.poll_count += 1
        try:
            await self._refresh()
        except GroupQuizError as exc:
            self.failure_count += 1
            logger.warning("Poll %s failed, retrying next cycle: %s", self._name, exc)
