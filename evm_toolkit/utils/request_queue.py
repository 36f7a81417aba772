"""
Rate-limited, concurrency-bounded request queue.

Every outbound call to a throttled API goes through a RequestScheduler: calls
are queued in submission order and dispatched by a single periodic tick,
at most one per tick, while fewer than ``max_concurrent`` are in flight.
"""

import asyncio
import random
import string
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, TypeVar

from loguru import logger

T = TypeVar("T")


class QueueCleared(Exception):
    """Raised for queued operations that were dropped before being dispatched."""
    pass


class SchedulerClosed(QueueCleared):
    """Raised when work is submitted to a destroyed scheduler."""
    pass


@dataclass(frozen=True)
class SchedulerPolicy:
    """Concurrency and rate limits for one client."""
    max_concurrent: int = 3
    rate_per_second: float = 5.0

    def __post_init__(self):
        """Validate scheduler configuration."""
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        if self.rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")


@dataclass
class QueuedOperation:
    """A unit of work waiting for a dispatch slot."""
    id: str
    operation: Callable[[], Awaitable[Any]]
    future: "asyncio.Future[Any]"
    submitted_at: float = field(default_factory=time.time)


def _make_request_id(context: Optional[str]) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    request_id = f"{int(time.time() * 1000)}-{suffix}"
    return f"{request_id}-{context}" if context else request_id


class RequestScheduler:
    """
    FIFO request queue with a global rate limit and a concurrency cap.

    The scheduler owns exactly one dispatch task. It is started by the first
    ``enqueue`` (a running event loop is needed) and stopped by ``destroy``.
    After ``destroy`` the scheduler refuses new work with ``SchedulerClosed``.
    """

    def __init__(self, policy: Optional[SchedulerPolicy] = None):
        self.policy = policy or SchedulerPolicy()
        self.tick_interval = 1.0 / self.policy.rate_per_second

        self._queue: Deque[QueuedOperation] = deque()
        self._active = 0
        self._closed = False
        self._dispatch_task: Optional["asyncio.Task[None]"] = None
        self._running: Set["asyncio.Task[None]"] = set()

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def enqueue(
        self,
        operation: Callable[[], Awaitable[T]],
        context: Optional[str] = None
    ) -> T:
        """
        Queue an operation and wait for its result.

        Args:
            operation: Zero-argument callable returning an awaitable
            context: Label appended to the request id for diagnostics

        Returns:
            The operation's result

        Raises:
            SchedulerClosed: If the scheduler was destroyed
            QueueCleared: If the queue was cleared before dispatch
        """
        if self._closed:
            raise SchedulerClosed("Request scheduler has been destroyed")

        loop = asyncio.get_running_loop()
        entry = QueuedOperation(
            id=_make_request_id(context),
            operation=operation,
            future=loop.create_future()
        )
        self._queue.append(entry)
        self._ensure_dispatcher()

        logger.debug(f"Queued request {entry.id} (queue length: {len(self._queue)})")
        return await entry.future

    def _ensure_dispatcher(self) -> None:
        if self._dispatch_task is None:
            self._dispatch_task = asyncio.get_running_loop().create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        while True:
            self._dispatch_next()
            await asyncio.sleep(self.tick_interval)

    def _dispatch_next(self) -> None:
        """Dispatch the queue head if a concurrency slot is free."""
        if self._active >= self.policy.max_concurrent:
            return

        while self._queue:
            entry = self._queue.popleft()

            # Caller stopped waiting (cancelled); drop without using the tick
            if entry.future.done():
                continue

            self._active += 1
            task = asyncio.get_running_loop().create_task(self._run(entry))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
            return

    async def _run(self, entry: QueuedOperation) -> None:
        try:
            result = await entry.operation()
        except Exception as e:
            if not entry.future.done():
                entry.future.set_exception(e)
        except BaseException:
            # CancelledError cannot be set on a future; the caller sees a cancellation
            if not entry.future.done():
                entry.future.cancel()
            raise
        else:
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._active -= 1

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the queue state."""
        return {
            "queue_length": len(self._queue),
            "active_requests": self._active,
            "max_concurrent": self.policy.max_concurrent,
            "rate_per_second": self.policy.rate_per_second
        }

    def clear(self) -> int:
        """
        Reject every pending (not yet dispatched) operation with QueueCleared.

        Operations already running are not affected.

        Returns:
            Number of rejected operations
        """
        rejected = 0
        while self._queue:
            entry = self._queue.popleft()
            if not entry.future.done():
                entry.future.set_exception(QueueCleared(f"Queue cleared before request {entry.id} ran"))
                rejected += 1

        if rejected:
            logger.info(f"Request queue cleared, {rejected} pending requests rejected")
        return rejected

    def destroy(self) -> None:
        """Stop the dispatch timer and reject pending work. Safe to call twice."""
        if self._closed:
            return

        self._closed = True
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            self._dispatch_task = None

        self.clear()
        logger.debug("Request scheduler destroyed")

    async def wait_for_completion(self, poll_interval: float = 0.1) -> None:
        """Wait until nothing is queued and nothing is running."""
        while self._queue or self._active:
            await asyncio.sleep(poll_interval)
