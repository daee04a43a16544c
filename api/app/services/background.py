from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from functools import lru_cache
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Runs fire-and-forget coroutines on the current event loop.

    ``spawn`` hands back nothing, so request handlers cannot await the work.
    The runner only keeps references until each task finishes.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            logger.info("background tasks still running after drain: %s", len(still_running))

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task failed name=%s", task.get_name(), exc_info=exc)


@lru_cache
def get_task_runner() -> BackgroundTaskRunner:
    return BackgroundTaskRunner()
