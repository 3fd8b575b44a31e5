"""Background task ownership for the asyncio engine.

Every timer loop and fire-and-forget coroutine the engine starts is owned by
a :class:`TaskRunner`, so tearing a component down cancels all of them
synchronously and no task outlives its owner.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    *,
    base_sec: float,
    max_sec: float = 10.0,
    jitter: float = 0.0,
) -> float:
    """Exponential backoff with jitter (bounded). attempt is 1-based."""
    base = min(max_sec, base_sec * (1.6 ** max(0, attempt - 1)))
    j = 0.0 if jitter <= 0 else min(0.9, float(jitter))
    delay = base if j == 0 else base * (1.0 + random.uniform(-j, j))
    return max(0.0, delay)


class TaskRunner:
    """Spawns named asyncio tasks and cancels them as a group."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, T], *, name: str | None = None) -> asyncio.Task[T]:
        """Run coro as an owned task. Raises RuntimeError without a running loop.

        On that error coro is closed, so it is never left un-awaited.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            raise
        task = loop.create_task(coro, name=f"{self._name}:{name or 'task'}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def cancel_all(self) -> None:
        current = _current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    async def join(self) -> None:
        """Wait for cancelled tasks to unwind."""
        tasks = [t for t in self._tasks if t is not _current_task()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
