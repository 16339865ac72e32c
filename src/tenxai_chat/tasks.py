"""Background task queue for fire-and-forget work.

Sync requests, title generation and memory summarization must never block
or break the chat flow. Each submitted job runs at most once; an exception
is logged with the job name and then dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class BackgroundTaskQueue:
    """Schedules coroutines on the running loop and keeps them referenced."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def submit(self, name: str, job: Job) -> asyncio.Task | None:
        """Schedule *job* once. Returns ``None`` if no event loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping background job %s", name)
            return None

        task = loop.create_task(self._run(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, job: Job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            logger.debug("Background job %s cancelled", name)
            raise
        except Exception:
            self.failures += 1
            logger.exception("Background job %s failed", name)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every submitted job, including ones submitted meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
