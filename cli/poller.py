"""Fixed-interval poller driving server update checks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

OnPoll = Callable[[], Awaitable[None]]


class ServerPoller:
    """Run ``on_poll`` every ``interval`` seconds until stopped.

    The first tick happens one interval after ``start()``. A failing tick is
    logged and the next one is scheduled as usual.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float, on_poll: OnPoll) -> None:
        if interval <= 0:
            raise ValueError("Poll interval must be positive")
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(interval, on_poll))

    def stop(self) -> None:
        """Cancel the loop, including a tick that is currently running."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def aclose(self) -> None:
        """Stop and wait for the cancelled task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, interval: float, on_poll: OnPoll) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await on_poll()
            except Exception:
                logger.exception("Poll failed")
