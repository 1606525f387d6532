"""Bounded work queue: runs per-item workflows with a fixed concurrency ceiling."""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Worker = Callable[[T], Awaitable[Any]]


@dataclass
class QueueStats:
    """Counts for one drained queue."""

    started: int = 0
    skipped: int = 0
    peak_in_flight: int = 0


class BoundedWorkQueue(Generic[T]):
    """
    Admits items FIFO and keeps at most `concurrency` workers in flight.

    Features:
    - Refills a slot as soon as any in-flight worker settles
    - Finishes only when nothing is pending AND nothing is in flight
    - Checks `is_stopped()` before every admission; once set, the remaining
      items go to `on_skip` without being started
    - Never cancels in-flight work, unless `run` itself is cancelled

    Workers are expected to contain their own failures. An exception escaping
    a worker stops further admission, lets in-flight work finish, and is
    then re-raised.
    """

    def __init__(self, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._in_flight = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def in_flight(self) -> int:
        return self._in_flight

    async def run(
        self,
        items: Iterable[T],
        worker: Worker[T],
        is_stopped: Optional[Callable[[], bool]] = None,
        on_skip: Optional[Callable[[T], None]] = None,
    ) -> QueueStats:
        """Run `worker` over `items` and return once all of them settle."""
        pending: deque[T] = deque(items)
        running: set[asyncio.Task] = set()
        stats = QueueStats()
        error: Optional[BaseException] = None

        while True:
            while pending and len(running) < self._concurrency and error is None:
                if is_stopped is not None and is_stopped():
                    stats.skipped += self._drain(pending, on_skip)
                    break
                item = pending.popleft()
                running.add(asyncio.create_task(self._run_one(worker, item)))
                stats.started += 1
                stats.peak_in_flight = max(stats.peak_in_flight, len(running))

            if not running:
                break

            try:
                done, running = await asyncio.wait(
                    running, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                # The queue itself was cancelled; take its workers down with it
                for task in running:
                    task.cancel()
                await asyncio.gather(*running, return_exceptions=True)
                raise
            for task in done:
                exc = task.exception()
                if exc is not None and error is None:
                    logger.error(
                        "work_queue_worker_error",
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    error = exc

        if error is not None:
            # Items never admitted because of the error are left unrecorded;
            # the caller fails the whole job.
            raise error
        return stats

    async def _run_one(self, worker: Worker[T], item: T) -> Any:
        self._in_flight += 1
        try:
            return await worker(item)
        finally:
            self._in_flight -= 1

    @staticmethod
    def _drain(pending: deque[T], on_skip: Optional[Callable[[T], None]]) -> int:
        count = 0
        while pending:
            item = pending.popleft()
            if on_skip is not None:
                on_skip(item)
            count += 1
        return count
