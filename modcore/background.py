"""Tracked fire-and-forget tasks for best-effort side effects.

The decision path never awaits these writes. Tasks are held in a set so they
are not garbage collected mid-flight, failures are logged when the task
finishes, and drain() lets shutdown (and tests) wait for outstanding work.
"""

import asyncio
from typing import Coroutine

import structlog

log = structlog.get_logger()


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)
