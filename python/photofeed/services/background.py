"""Background task runner for fire-and-forget work.

Detached work (album refreshes, augmentation jobs) is submitted here
instead of being spawned bare. The runner keeps a strong reference to
every task until it finishes, and logs any exception the task raised
together with the task's name. An optional per-task error sink runs
after logging, so callers can release flags or bookkeeping on failure.
"""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from photofeed.logging import get_logger

logger = get_logger(__name__)

ErrorSink = Callable[[BaseException], Any]


class BackgroundTasks:
    """Owns detached asyncio tasks for the lifetime of the app."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        on_error: ErrorSink | None = None,
    ) -> asyncio.Task:
        """Schedule a coroutine without awaiting it.

        Args:
            coro: The coroutine to run.
            name: Task name used in logs.
            on_error: Called with the exception if the task fails.
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, on_error))
        return task

    def _finished(self, task: asyncio.Task, on_error: ErrorSink | None) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error(
            "background_task_failed",
            task_name=task.get_name(),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        if on_error is not None:
            try:
                on_error(exc)
            except Exception as sink_exc:
                logger.error(
                    "background_task_error_sink_failed",
                    task_name=task.get_name(),
                    error=str(sink_exc),
                )

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all currently running tasks (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()


async def run_periodically(
    job: Callable[[], Awaitable[Any]], interval_s: float, *, name: str
) -> None:
    """Run job every interval_s seconds until cancelled.

    A failing run is logged and does not stop the loop.
    """
    while True:
        await asyncio.sleep(interval_s)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("periodic_job_failed", job=name, error=str(e), error_type=type(e).__name__)
