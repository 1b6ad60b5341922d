"""Bounded in-process worker pool for fire-and-forget work.

Requests hand off recommendation updates, email delivery, cache warming and
relay publishes here instead of spawning a task per request. Each job runs
once; failures are logged and dropped.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class TaskPool:
    def __init__(self, workers: int = 4, max_pending: int = 1000):
        self.worker_count = max(1, workers)
        self.max_pending = max(1, max_pending)
        self._queue: asyncio.Queue | None = None
        self._workers: list[asyncio.Task] = []
        self.dropped = 0
        self.failed = 0

    def _ensure_started(self):
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.max_pending)
        for i in range(self.worker_count):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"task-pool-{i}"))

    def submit(self, name: str, factory: JobFactory) -> bool:
        """Queue ``factory()`` for execution. Returns False if the pool is full."""
        self._ensure_started()
        try:
            self._queue.put_nowait((name, factory))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Task pool full (%d pending), dropping %s", self.max_pending, name)
            return False
        return True

    async def _worker(self, index: int):
        while True:
            name, factory = await self._queue.get()
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.exception("Background task %s failed", name)
            finally:
                self._queue.task_done()

    async def join(self):
        """Wait until every queued job has run."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True):
        if drain:
            await self.join()
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0
