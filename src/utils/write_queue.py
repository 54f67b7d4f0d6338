"""Background write queue for fire-and-forget database writes."""

import asyncio
from typing import Any, Awaitable, Callable, Generic, TypeVar

from config import logger
from utils.async_retry import retry_with_backoff

T = TypeVar('T')


class WriteQueue(Generic[T]):
    """Sequential background writer with lock retry.

    Callers enqueue items and return immediately; a single worker task
    hands each item to the processor, retrying on database lock. A failing
    item is counted and logged, never raised back to the caller.

    Usage:
        queue = WriteQueue(store.insert_usage)
        await queue.start()
        queue.put_nowait(record)
        await queue.stop()   # drains before returning
    """

    def __init__(
        self,
        processor: Callable[[T], Awaitable[Any]],
        max_retry_delay: float = 5.0,
        name: str = "write queue"
    ):
        self._queue: asyncio.Queue[T | None] = asyncio.Queue()
        self._processor = processor
        self._max_retry_delay = max_retry_delay
        self._name = name
        self._task: asyncio.Task | None = None
        self._running = False
        self._items_processed = 0
        self._items_failed = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background worker task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._worker())
        logger.debug(f"{self._name} worker started")

    async def stop(self):
        """Stop the worker after draining remaining items."""
        if not self._running:
            return

        self._running = False
        await self._queue.put(None)  # Sentinel

        if self._task:
            await self._task
            self._task = None

        logger.debug(
            f"{self._name} worker stopped. "
            f"Processed: {self._items_processed}, Failed: {self._items_failed}"
        )

    async def put(self, item: T):
        await self._queue.put(item)

    def put_nowait(self, item: T):
        self._queue.put_nowait(item)

    async def flush(self, timeout: float | None = None) -> bool:
        """Wait for all queued items to be processed.

        Returns:
            True if queue was drained, False on timeout
        """
        try:
            if timeout:
                await asyncio.wait_for(self._queue.join(), timeout)
            else:
                await self._queue.join()
            return True
        except asyncio.TimeoutError:
            return False

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            "size": self._queue.qsize(),
            "processed": self._items_processed,
            "failed": self._items_failed,
            "running": self._running,
        }

    async def _process(self, item: T) -> None:
        try:
            await retry_with_backoff(
                self._processor,
                item,
                max_delay=self._max_retry_delay
            )
            self._items_processed += 1
        except Exception as e:
            logger.error(f"{self._name} item failed: {e}")
            self._items_failed += 1
        finally:
            self._queue.task_done()

    async def _worker(self):
        while True:
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                break

            if item is None:
                self._queue.task_done()
                break
            await self._process(item)

        # Items enqueued after the sentinel still get written
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is None:
                self._queue.task_done()
                continue
            await self._process(item)
