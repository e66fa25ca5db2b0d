"""Bounded-concurrency FIFO job queue.

submit() appends a job and returns a future for its outcome. A job starts
only while fewer than max_concurrent jobs are running; whenever a job
finishes (result, exception or cancellation) the queue immediately tries
to start the next one, so it drains without outside help.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from photofeed.logging import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


@dataclass
class _Job:
    factory: JobFactory
    future: asyncio.Future
    name: str


class JobQueue:
    """FIFO queue running at most max_concurrent jobs at once.

    Args:
        max_concurrent: Concurrency limit (>= 1).
    """

    def __init__(self, max_concurrent: int = 1):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._pending: deque[_Job] = deque()
        self._running = 0
        self._tasks: set[asyncio.Task] = set()
        self.peak_running = 0

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, factory: JobFactory, *, name: str = "job") -> asyncio.Future:
        """Queue a job; the factory is called only when the job starts."""
        future = asyncio.get_running_loop().create_future()
        self._pending.append(_Job(factory=factory, future=future, name=name))
        self._pump()
        return future

    def _pump(self) -> None:
        while self._running < self.max_concurrent and self._pending:
            job = self._pending.popleft()
            if job.future.done():
                # Cancelled while waiting
                continue
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)
            task = asyncio.create_task(self._run(job), name=job.name)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, job: _Job) -> None:
        try:
            result = await job.factory()
        except asyncio.CancelledError:
            if not job.future.done():
                job.future.cancel()
            raise
        except Exception as e:
            if not job.future.done():
                job.future.set_exception(e)
        else:
            if not job.future.done():
                job.future.set_result(result)
        finally:
            self._running -= 1
            self._pump()

    async def close(self) -> None:
        """Cancel queued and running jobs."""
        while self._pending:
            self._pending.popleft().future.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
