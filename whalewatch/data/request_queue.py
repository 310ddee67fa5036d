"""Serialized, rate-limited queue for outbound requests."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from ..core.errors import QueueClosedError

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


class RequestQueue:
    """FIFO queue that runs one operation at a time with a fixed gap.

    A single drain task executes queued operations in submission order. After
    each operation, if more work is queued, it sleeps ``delay`` seconds before
    starting the next one. Failures are delivered to the failing operation's
    future only.
    """

    def __init__(
        self,
        delay: float = 0.25,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize request queue.

        Args:
            delay: Minimum gap in seconds between consecutive operations
            sleep: Sleep coroutine used between operations
        """
        self.delay = delay
        self._sleep = sleep
        self._queue: deque[tuple[Operation, asyncio.Future]] = deque()
        self._drain_task: asyncio.Task | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of operations waiting to start."""
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, operation: Operation) -> asyncio.Future:
        """Queue an operation and return a future for its result."""
        if self._closed:
            raise QueueClosedError("Request queue is closed")

        future = asyncio.get_running_loop().create_future()
        self._queue.append((operation, future))
        logger.debug("Operation enqueued", pending=len(self._queue))

        self.start_draining()
        return future

    def start_draining(self) -> None:
        """Start the drain task unless one is already running."""
        if self.is_draining or not self._queue:
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue:
            operation, future = self._queue.popleft()

            if not future.cancelled():
                try:
                    result = await operation()
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except Exception as e:
                    logger.debug("Queued operation failed", error=str(e))
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)

            if self._queue:
                await self._sleep(self.delay)

    async def close(self) -> None:
        """Stop draining and fail every operation still queued."""
        self._closed = True

        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.set_exception(QueueClosedError("Request queue closed"))

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        self._drain_task = None

        logger.info("Request queue closed")
