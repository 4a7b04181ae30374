"""Bounded concurrency scheduler for async units of work.

Units are pushed as zero-argument callables returning awaitables. At most
``capacity`` of them run at once; the rest wait in a FIFO queue. A unit's
failure is caught and counted here and never reaches the scheduler's other
units or its caller.

Example:
    >>> scheduler = BoundedScheduler(capacity=3)
    >>> for task in tasks:
    ...     scheduler.push(lambda task=task: generate(task), name=task.paragraph_id)
    >>> await scheduler.on_idle()
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .observability import RunMetrics

logger = logging.getLogger(__name__)

UnitFactory = Callable[[], Awaitable[Any]]


class BoundedScheduler:
    """Admission-controlled runner for async units.

    Invariants:
        - running_count never exceeds capacity
        - a unit's completion always releases its slot and dispatches again
        - the idle event is set exactly when nothing is running or queued

    Attributes:
        capacity: Maximum number of concurrently running units
        completed: Units that finished without raising
        failed: Units that raised
        peak_running: Highest running_count observed
    """

    def __init__(self, capacity: int, metrics: RunMetrics | None = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.metrics = metrics
        self.completed = 0
        self.failed = 0
        self.peak_running = 0
        self._running = 0
        self._queue: deque[tuple[str, UnitFactory]] = deque()
        self._tasks: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def running_count(self) -> int:
        return self._running

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def is_idle(self) -> bool:
        return self._running == 0 and not self._queue

    def push(self, factory: UnitFactory, name: str | None = None) -> None:
        """Enqueue a unit and dispatch if a slot is free.

        Must be called from within a running event loop.
        """
        self._idle.clear()
        self._queue.append((name or getattr(factory, "__name__", "unit"), factory))
        self._dispatch()

    async def on_idle(self) -> None:
        """Wait until nothing is running and the queue is empty.

        Returns immediately when already idle. The event is set in the same
        step that observes idleness, so a waiter arriving as the last unit
        completes is never missed.
        """
        await self._idle.wait()

    def _dispatch(self) -> None:
        while self._running < self.capacity and self._queue:
            name, factory = self._queue.popleft()
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)
            task = asyncio.get_running_loop().create_task(self._run(name, factory))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self.is_idle:
            self._idle.set()

    async def _run(self, name: str, factory: UnitFactory) -> None:
        try:
            await factory()
        except Exception:
            self.failed += 1
            if self.metrics is not None:
                self.metrics.increment("scheduler.failed")
            logger.exception(f"Scheduled unit '{name}' failed")
        else:
            self.completed += 1
        finally:
            self._running -= 1
            self._dispatch()
