"""Tests for the background write queue."""

import asyncio
import sqlite3

import pytest

from utils.write_queue import WriteQueue


@pytest.mark.asyncio
async def test_queue_processes_items_in_order():
    processed = []

    async def processor(item):
        processed.append(item)

    queue = WriteQueue(processor)
    await queue.start()
    for record in ({"op": "intent"}, {"op": "summary"}, {"op": "embedding"}):
        queue.put_nowait(record)
    await queue.flush()
    await queue.stop()

    assert [r["op"] for r in processed] == ["intent", "summary", "embedding"]
    assert queue.stats["processed"] == 3


@pytest.mark.asyncio
async def test_queue_retries_on_lock():
    """A locked database delays the write instead of dropping it."""
    attempts = []

    async def locked_twice(item):
        attempts.append(item)
        if len(attempts) < 3:
            raise sqlite3.OperationalError("database is locked")

    queue = WriteQueue(locked_twice, max_retry_delay=0.05)
    await queue.start()
    await queue.put("usage record")
    await queue.flush()
    await queue.stop()

    assert len(attempts) == 3
    assert queue.stats["processed"] == 1
    assert queue.stats["failed"] == 0


@pytest.mark.asyncio
async def test_failures_are_counted_not_raised():
    async def always_fails(item):
        raise ValueError("bad record")

    queue = WriteQueue(always_fails)
    await queue.start()
    await queue.put("record")
    await queue.flush()
    await queue.stop()

    assert queue.stats["failed"] == 1
    assert queue.stats["processed"] == 0


@pytest.mark.asyncio
async def test_stop_drains_pending_items():
    processed = []

    async def slow(item):
        await asyncio.sleep(0.01)
        processed.append(item)

    queue = WriteQueue(slow)
    await queue.start()
    for i in range(5):
        queue.put_nowait(i)
    await queue.stop()

    assert processed == [0, 1, 2, 3, 4]
    assert queue.running is False


@pytest.mark.asyncio
async def test_flush_timeout():
    release = asyncio.Event()

    async def blocked(item):
        await release.wait()

    queue = WriteQueue(blocked)
    await queue.start()
    await queue.put("record")

    assert await queue.flush(timeout=0.05) is False

    release.set()
    assert await queue.flush(timeout=1.0) is True
    await queue.stop()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    async def noop(item):
        pass

    queue = WriteQueue(noop)
    await queue.stop()
    await queue.start()
    await queue.start()
    assert queue.running
    await queue.stop()
    assert queue.size == 0
