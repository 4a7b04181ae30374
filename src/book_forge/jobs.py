"""Stage job queue.

Pipeline stages hand off to each other by submitting jobs instead of calling
one another directly. Each job is an independently scheduled and retried
unit carrying the run's context; stages subscribe to the completion of the
stage before them.

Example:
    >>> queue = StageJobQueue(RetryConfig(max_attempts=2, retryable=(StageError,)))
    >>> queue.register("draft", run_draft)
    >>> queue.subscribe("draft", on_draft_done)
    >>> queue.submit(StageJob("draft", context))
    >>> await queue.join()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .exceptions import RetryExhaustedError, StageError
from .retry import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class StageJob:
    """A request to run one stage for one run context."""

    stage: str
    context: Any


@dataclass(frozen=True)
class StageOutcome:
    """Result of a finished stage job."""

    job: StageJob
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


StageHandler = Callable[[StageJob], Awaitable[None]]
CompletionHandler = Callable[[StageOutcome], Awaitable[None] | None]


class StageJobQueue:
    """Work queue running stage jobs on a fixed number of workers.

    Attributes:
        retry: Retry policy per job; by default a single attempt
        workers: Number of worker tasks
    """

    def __init__(
        self,
        retry: RetryConfig | None = None,
        workers: int = 2,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.retry = retry or RetryConfig(
            max_attempts=1, initial_delay=0.0, retryable=(StageError,)
        )
        self.workers = workers
        self._handlers: dict[str, StageHandler] = {}
        self._subscribers: dict[str, list[CompletionHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[StageJob] = asyncio.Queue()
        self._worker_tasks: list[asyncio.Task[None]] = []

    def register(self, stage: str, handler: StageHandler) -> None:
        """Set the handler that runs jobs of a stage."""
        self._handlers[stage] = handler

    def subscribe(self, stage: str, callback: CompletionHandler) -> None:
        """Call ``callback`` with the outcome of every finished job of a stage."""
        self._subscribers[stage].append(callback)

    def submit(self, job: StageJob) -> None:
        """Enqueue a job; workers are started on first use.

        Raises:
            KeyError: If no handler is registered for the job's stage
        """
        if job.stage not in self._handlers:
            raise KeyError(f"No handler registered for stage '{job.stage}'")
        self._ensure_workers()
        self._queue.put_nowait(job)
        logger.debug(f"Submitted stage job: {job.stage}")

    async def join(self) -> None:
        """Wait until every submitted job, including follow-ups, has finished."""
        await self._queue.join()

    async def close(self) -> None:
        """Stop the workers once the queue is drained."""
        await self._queue.join()
        for task in self._worker_tasks:
            task.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks.clear()

    def _ensure_workers(self) -> None:
        self._worker_tasks = [task for task in self._worker_tasks if not task.done()]
        loop = asyncio.get_running_loop()
        while len(self._worker_tasks) < self.workers:
            self._worker_tasks.append(loop.create_task(self._worker()))

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                outcome = await self._execute(job)
                # Subscribers run before task_done so their follow-up jobs
                # are queued before join() can return.
                await self._notify(outcome)
            finally:
                self._queue.task_done()

    async def _execute(self, job: StageJob) -> StageOutcome:
        handler = self._handlers[job.stage]
        try:
            await self.retry.run(
                lambda: handler(job),
                label=f"stage '{job.stage}'",
            )
        except RetryExhaustedError as e:
            error = e.last_error or e
            logger.error(f"Stage '{job.stage}' failed: {error}")
            return StageOutcome(job=job, error=error)
        except Exception as e:
            logger.exception(f"Stage '{job.stage}' failed")
            return StageOutcome(job=job, error=e)
        return StageOutcome(job=job)

    async def _notify(self, outcome: StageOutcome) -> None:
        for callback in self._subscribers.get(outcome.job.stage, []):
            try:
                result = callback(outcome)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Completion handler for stage '{outcome.job.stage}' failed")
