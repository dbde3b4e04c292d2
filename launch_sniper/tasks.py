"""
Submit-and-detach helpers.

Orders are fired without waiting for the ledger. The tasks doing the network
work still need an owner: someone has to hold a reference until they finish
and someone has to log what went wrong. That owner is a DetachedTasks
instance. Results are never returned to whoever spawned the task.
"""

import asyncio
import logging
from typing import Coroutine, Optional

logger = logging.getLogger(__name__)


class DetachedTasks:
    """Spawn-and-forget task set. Failures are logged, never raised."""

    def __init__(self, name: str = "detached"):
        self.name = name
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, label: str = "") -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, label))
        return task

    def _on_done(self, task: asyncio.Task, label: str):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.warning("[%s] %s failed: %s", self.name, label or "task", exc)

    async def drain(self, timeout: Optional[float] = None):
        """Wait for everything in flight, including tasks spawned while waiting."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)


class BoundedDispatcher(DetachedTasks):
    """
    DetachedTasks with a cap on how much downstream work may be in flight.

    When the cap is reached new work is dropped with a warning instead of
    queueing: a launch we are minutes late for is not worth sniping.
    """

    def __init__(self, max_in_flight: int, name: str = "dispatcher"):
        super().__init__(name=name)
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight
        self.dropped = 0

    def submit(self, coro: Coroutine, label: str = "") -> bool:
        if len(self) >= self.max_in_flight:
            coro.close()
            self.dropped += 1
            logger.warning("[%s] %d tasks in flight, dropping %s",
                           self.name, len(self), label or "task")
            return False
        self.spawn(coro, label)
        return True
