"""
Bounded-concurrency admission queue.

Limits how many request-handling tasks run at once and queues the rest in
arrival order until a slot frees up.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

_UNSET: Any = object()


class QueueError(Exception):
    """Base exception for admission queue errors."""


class InvalidConfiguration(QueueError, ValueError):
    """Raised at construction when a limit is not valid."""


class QueueFull(QueueError):
    """Raised by admit() when the pending sequence is at its ceiling."""

    def __init__(self, max_pending: int):
        super().__init__(f"Admission queue is full ({max_pending} pending)")
        self.max_pending = max_pending


class TaskTimeout(QueueError, TimeoutError):
    """A dispatched task exceeded its allotted time."""

    def __init__(self, request_id: str, timeout: float):
        super().__init__(f"Task {request_id} timed out after {timeout:g}s")
        self.request_id = request_id
        self.timeout = timeout


class ShuttingDown(QueueError):
    """The queue stopped accepting work."""

    def __init__(self, message: str = "Admission queue is shutting down"):
        super().__init__(message)


@dataclass
class QueuedTask(Generic[T]):
    """A task waiting for, or holding, an execution slot."""

    request_id: str
    callback: Callable[[], Awaitable[T]]
    future: asyncio.Future
    timeout: float | None = None
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class QueueStats:
    """Queue statistics."""

    total_admitted: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_rejected: int = 0
    total_timeouts: int = 0
    total_cancelled: int = 0
    current_pending: int = 0
    current_running: int = 0
    peak_running: int = 0
    avg_wait_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_admitted": self.total_admitted,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_rejected": self.total_rejected,
            "total_timeouts": self.total_timeouts,
            "total_cancelled": self.total_cancelled,
            "current_pending": self.current_pending,
            "current_running": self.current_running,
            "peak_running": self.peak_running,
            "avg_wait_time_ms": round(self.avg_wait_time_ms, 2),
        }


def _check_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise InvalidConfiguration(f"{name} must be a positive integer, got {value!r}")


def _check_timeout(value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidConfiguration(f"task_timeout must be a positive number, got {value!r}")


class AdmissionQueue:
    """
    FIFO admission gate that runs at most ``limit`` tasks concurrently.

    Features:
    - Strict arrival-order dispatch for waiting tasks
    - Optional ceiling on the pending sequence (backpressure)
    - Optional per-task timeout
    - Graceful shutdown that rejects pending work

    All methods must be called from the event loop thread. Pending and
    running bookkeeping only changes inside synchronous code, so the
    capacity check and the slot increment happen in the same loop tick.

    Example:
        queue = AdmissionQueue(limit=3)

        result = await queue.admit(lambda: relay.process(files, email))
    """

    def __init__(
        self,
        limit: int,
        max_pending: int | None = None,
        task_timeout: float | None = None,
    ):
        _check_positive_int("limit", limit)
        if max_pending is not None:
            _check_positive_int("max_pending", max_pending)
        _check_timeout(task_timeout)

        self._limit = limit
        self._max_pending = max_pending
        self._task_timeout = task_timeout

        self._pending: deque[QueuedTask] = deque()
        self._running = 0
        self._workers: set[asyncio.Task] = set()
        self._closed = False
        self._stats = QueueStats()
        self._request_counter = 0
        self._total_wait_time = 0.0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> QueueStats:
        self._stats.current_pending = len(self._pending)
        self._stats.current_running = self._running
        return self._stats

    def admit(
        self,
        task: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = _UNSET,
    ) -> asyncio.Future[T]:
        """
        Enqueue a task and return a future for its outcome.

        Args:
            task: Zero-argument callable returning an awaitable
            timeout: Per-task timeout overriding the queue default
                (None disables it)

        Returns:
            Future resolved with the task's result or rejected with the
            task's own exception

        Raises:
            QueueFull: If the pending sequence is at its ceiling
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        if self._closed:
            self._stats.total_rejected += 1
            future.set_exception(ShuttingDown())
            return future

        if self._max_pending is not None and len(self._pending) >= self._max_pending:
            self._drop_abandoned()

        if self._max_pending is not None and len(self._pending) >= self._max_pending:
            # Still full after discarding cancelled waiters
            self._stats.total_rejected += 1
            logger.warning(
                "Admission rejected, queue full",
                pending=len(self._pending),
                max_pending=self._max_pending,
            )
            raise QueueFull(self._max_pending)

        if timeout is _UNSET:
            timeout = self._task_timeout
        else:
            _check_timeout(timeout)

        self._request_counter += 1
        entry = QueuedTask(
            request_id=f"task_{self._request_counter}",
            callback=task,
            future=future,
            timeout=timeout,
        )
        self._pending.append(entry)
        self._stats.total_admitted += 1

        self._dispatch()
        return future

    async def run(
        self,
        task: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = _UNSET,
    ) -> T:
        """Admit a task and wait for its outcome."""
        return await self.admit(task, timeout=timeout)

    def _drop_abandoned(self) -> None:
        """Remove pending entries whose caller already gave up."""
        live = deque(entry for entry in self._pending if not entry.future.done())
        self._stats.total_cancelled += len(self._pending) - len(live)
        self._pending = live

    def _dispatch(self) -> None:
        """Start pending tasks while capacity is available."""
        while self._running < self._limit and self._pending:
            entry = self._pending.popleft()

            if entry.future.done():
                # Caller gave up while waiting
                self._stats.total_cancelled += 1
                continue

            self._running += 1
            self._stats.peak_running = max(self._stats.peak_running, self._running)
            self._total_wait_time += (time.monotonic() - entry.timestamp) * 1000

            worker = asyncio.get_running_loop().create_task(self._run(entry))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _run(self, entry: QueuedTask) -> None:
        try:
            result = await self._execute(entry)
        except asyncio.CancelledError:
            self._settle(entry, cancelled=True)
            raise
        except Exception as e:
            self._settle(entry, error=e)
        else:
            self._settle(entry, result=result)

    async def _execute(self, entry: QueuedTask) -> Any:
        work = asyncio.ensure_future(entry.callback())

        def _propagate_cancel(fut: asyncio.Future) -> None:
            if fut.cancelled():
                work.cancel()

        entry.future.add_done_callback(_propagate_cancel)

        if entry.timeout is None:
            return await work

        try:
            done, _ = await asyncio.wait({work}, timeout=entry.timeout)
        except asyncio.CancelledError:
            work.cancel()
            raise

        if not done:
            work.cancel()
            raise TaskTimeout(entry.request_id, entry.timeout)

        return work.result()

    def _settle(
        self,
        entry: QueuedTask,
        result: Any = None,
        error: BaseException | None = None,
        cancelled: bool = False,
    ) -> None:
        self._running -= 1

        if cancelled:
            self._stats.total_cancelled += 1
            if not entry.future.done():
                entry.future.cancel()
        elif error is not None:
            if isinstance(error, TaskTimeout):
                self._stats.total_timeouts += 1
                logger.warning(
                    "Admitted task timed out",
                    request_id=entry.request_id,
                    timeout=entry.timeout,
                )
            self._stats.total_failed += 1
            if not entry.future.done():
                entry.future.set_exception(error)
        else:
            self._stats.total_completed += 1
            if not entry.future.done():
                entry.future.set_result(result)

        settled = self._stats.total_completed + self._stats.total_failed
        if settled:
            self._stats.avg_wait_time_ms = self._total_wait_time / settled

        self._dispatch()

    async def shutdown(self, cancel_running: bool = False) -> None:
        """
        Stop accepting work and wait for in-flight tasks.

        Pending tasks are rejected with ShuttingDown. Running tasks finish
        normally unless cancel_running is set.
        """
        if not self._closed:
            self._closed = True
            logger.info(
                "Shutting down admission queue",
                pending=len(self._pending),
                running=self._running,
            )

        while self._pending:
            entry = self._pending.popleft()
            self._stats.total_rejected += 1
            if not entry.future.done():
                entry.future.set_exception(ShuttingDown())

        workers = list(self._workers)
        if cancel_running:
            for worker in workers:
                worker.cancel()

        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
