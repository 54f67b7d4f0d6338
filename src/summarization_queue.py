"""Per-conversation mutual exclusion for background summarization.

Not a job queue: a second start for a conversation that already has a run
in flight is dropped, and nothing survives a process restart. Callers that
need the freshest summaries await ``wait_for`` before reading.

One instance is created at startup and handed to whoever needs it; tests
build their own.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from config import logger


SummarizationTask = Callable[[], Awaitable[Any]]


class SummarizationQueue:
    """Tracks at most one in-flight summarization task per conversation."""

    def __init__(self):
        self._locks: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}

    def is_active(self, conversation_id: str) -> bool:
        """True while a started task for this conversation has not settled."""
        return conversation_id in self._locks

    async def wait_for(self, conversation_id: str) -> None:
        """Suspend until the in-flight task for this conversation settles.

        Returns immediately when nothing is running. The task's outcome is
        not reported; its errors were already logged by the runner.
        """
        task = self._tasks.get(conversation_id)
        if task is None:
            return
        # asyncio.wait never raises the task's exception
        await asyncio.wait({task})

    def start(self, conversation_id: str, task_fn: SummarizationTask) -> bool:
        """Launch summarization in the background without blocking.

        Must be called from inside a running event loop.

        Returns:
            True if a task was started, False if one was already in flight
        """
        if self.is_active(conversation_id):
            logger.info(f"Summarization already in progress for {conversation_id}, skipping")
            return False

        self._locks.add(conversation_id)
        task = asyncio.create_task(
            self._run(conversation_id, task_fn),
            name=f"summarize-{conversation_id}",
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t: self._release(conversation_id, t))
        return True

    def _release(self, conversation_id: str, task: asyncio.Task) -> None:
        # Runs even when the task was cancelled before its first step
        if self._tasks.get(conversation_id) is task:
            self._tasks.pop(conversation_id)
            self._locks.discard(conversation_id)

    async def _run(self, conversation_id: str, task_fn: SummarizationTask) -> Optional[Any]:
        started = time.monotonic()
        logger.info(f"Starting background summarization for {conversation_id}")
        try:
            result = await task_fn()
            duration = time.monotonic() - started
            logger.info(f"Summarization for {conversation_id} finished in {duration:.2f}s")
            return result
        except asyncio.CancelledError:
            logger.warning(f"Summarization for {conversation_id} cancelled")
            raise
        except Exception as e:
            duration = time.monotonic() - started
            logger.error(f"Summarization for {conversation_id} failed after {duration:.2f}s: {e}")
            return None

    def status(self) -> dict[str, list[str]]:
        return {
            "active": sorted(self._locks),
            "tracked": sorted(self._tasks),
        }

    async def close(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight runs, cancelling any left after the timeout."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
