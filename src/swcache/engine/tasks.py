"""Detached background tasks whose failures stay observable.

The engine returns a fetched response to the page *before* the copy of it has
been written to the cache.  Those writes are started with
:meth:`BackgroundTasks.spawn`: the task is kept referenced until it finishes
(so it cannot be garbage-collected mid-flight), and any exception it raises
is logged and counted in :attr:`BackgroundTasks.failed` instead of surfacing
as "Task exception was never retrieved".  Only the most recent failures are
kept in :attr:`BackgroundTasks.failures`.  The request path never joins these
tasks; shutdown code and tests call :meth:`join`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Coroutine

logger = logging.getLogger(__name__)

MAX_RECORDED_FAILURES = 100


@dataclass
class TaskFailure:
    """A background task that raised instead of completing."""

    name: str
    error: BaseException


class BackgroundTasks:
    """Tracks fire-and-forget coroutines spawned on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures: deque[TaskFailure] = deque(maxlen=MAX_RECORDED_FAILURES)
        self.failed = 0
        self.completed = 0

    @property
    def pending(self) -> int:
        """Number of tasks that have not finished yet."""
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule *coro* as a detached task and return it.

        Must be called from inside a running event loop.
        """
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def join(self) -> None:
        """Wait until every spawned task (including ones spawned meanwhile) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task %s failed: %s", task.get_name(), exc)
            self.failed += 1
            self.failures.append(TaskFailure(task.get_name(), exc))
        else:
            self.completed += 1
