from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Coroutine, Optional, Set

LOGGER = logging.getLogger(__name__)

ErrorSink = Callable[[str, BaseException], None]


def log_task_error(name: str, exc: BaseException) -> None:
    LOGGER.warning("Background task %s failed: %s", name, exc, exc_info=exc)


class DetachedTaskRunner:
    """Fire-and-forget coroutines that never raise into the caller.

    ``spawn`` returns immediately. Failures are handed to the error sink once the task
    finishes; the caller is never awaited on and never sees the exception.
    """

    def __init__(self, *, error_sink: Optional[ErrorSink] = None) -> None:
        self.error_sink = error_sink or log_task_error
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        try:
            self.error_sink(task.get_name(), exc)
        except Exception:
            LOGGER.exception("Error sink failed for background task %s", task.get_name())

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight tasks (shutdown hook / tests)."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                LOGGER.warning("%d background task(s) still running after drain timeout", len(not_done))
                return


@lru_cache
def get_background_task_runner() -> DetachedTaskRunner:
    return DetachedTaskRunner()
