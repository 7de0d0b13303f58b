"""In-process admission control for background orchestrations."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Tuple

from .constants import DEFAULT_MAX_CONCURRENT_JOBS

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class Scheduler:
    """FIFO queue with a cap on concurrently running jobs.

    Jobs are admitted in submission order whenever a slot is free and a slot
    is released when a job finishes, successfully or not. The queue itself is
    unbounded and lives only in memory.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_CONCURRENT_JOBS) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._queue: Deque[Tuple[str, JobFactory]] = deque()
        self._active = 0
        self._tasks: Set[asyncio.Task] = set()
        self.max_active_observed = 0

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._queue)

    def submit(self, job: JobFactory, name: Optional[str] = None) -> None:
        """Enqueue ``job`` and start it if capacity allows.

        Must be called from within a running event loop.
        """
        name = name or getattr(job, "__name__", "job")
        self._queue.append((name, job))
        logger.debug(f"Queued {name}; active={self._active} pending={len(self._queue)}")
        self._admit()

    def _admit(self) -> None:
        while self._active < self.capacity and self._queue:
            name, job = self._queue.popleft()
            self._active += 1
            self.max_active_observed = max(self.max_active_observed, self._active)
            task = asyncio.create_task(self._run(name, job), name=name)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, name: str, job: JobFactory) -> None:
        try:
            await job()
        except Exception as e:
            logger.error(f"Job {name} raised: {e}")
        finally:
            self._active -= 1
            self._admit()

    async def join(self) -> None:
        """Wait until the queue is drained and no job is running."""
        while self._tasks or self._queue:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
