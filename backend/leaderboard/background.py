"""Tracking for fire-and-forget work spawned while serving requests."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = structlog.get_logger()


class BackgroundTasks:
    """Owns best-effort tasks whose result the caller does not wait for.

    Tasks are referenced until they finish so they cannot be garbage
    collected mid-flight. Failures are logged, never raised. ``drain`` waits
    for everything outstanding and is awaited on shutdown and in tests.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("background task cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background task failed", task=task.get_name(), exc_info=exc)

    async def drain(self) -> None:
        while pending := [task for task in self._tasks if not task.done()]:
            await asyncio.gather(*pending, return_exceptions=True)
