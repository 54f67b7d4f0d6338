"""Tests for per-conversation summarization exclusion."""

import asyncio

import pytest

from summarization_queue import SummarizationQueue


@pytest.mark.asyncio
async def test_second_start_is_dropped():
    """Two quick starts for one conversation run exactly one task."""
    queue = SummarizationQueue()
    runs = []
    release = asyncio.Event()

    async def task():
        runs.append("run")
        await release.wait()

    assert queue.start("conv-1", task) is True
    assert queue.start("conv-1", task) is False
    await asyncio.sleep(0)
    release.set()
    await queue.wait_for("conv-1")

    assert runs == ["run"]
    assert not queue.is_active("conv-1")


@pytest.mark.asyncio
async def test_wait_for_resolves_after_task_settles():
    queue = SummarizationQueue()
    events = []

    async def task():
        await asyncio.sleep(0.02)
        events.append("done")

    queue.start("conv-1", task)
    assert queue.is_active("conv-1")
    await queue.wait_for("conv-1")

    assert events == ["done"]
    assert not queue.is_active("conv-1")


@pytest.mark.asyncio
async def test_wait_for_without_task_returns_immediately():
    queue = SummarizationQueue()
    await asyncio.wait_for(queue.wait_for("nothing"), timeout=0.1)


@pytest.mark.asyncio
async def test_conversations_run_independently():
    queue = SummarizationQueue()
    release = asyncio.Event()

    async def task():
        await release.wait()

    assert queue.start("conv-1", task)
    assert queue.start("conv-2", task)
    assert queue.status()["active"] == ["conv-1", "conv-2"]

    release.set()
    await queue.wait_for("conv-1")
    await queue.wait_for("conv-2")
    assert queue.status() == {"active": [], "tracked": []}


@pytest.mark.asyncio
async def test_task_error_is_swallowed_and_lock_released():
    """A failing task never surfaces and the conversation can run again."""
    queue = SummarizationQueue()

    async def failing():
        raise RuntimeError("llm down")

    queue.start("conv-1", failing)
    await queue.wait_for("conv-1")
    assert not queue.is_active("conv-1")

    ran = []

    async def ok():
        ran.append(True)

    assert queue.start("conv-1", ok) is True
    await queue.wait_for("conv-1")
    assert ran == [True]


@pytest.mark.asyncio
async def test_close_cancels_after_timeout():
    queue = SummarizationQueue()

    async def forever():
        await asyncio.sleep(10)

    queue.start("conv-1", forever)
    await queue.close(timeout=0.01)
    assert not queue.is_active("conv-1")


@pytest.mark.asyncio
async def test_instances_are_isolated():
    first = SummarizationQueue()
    second = SummarizationQueue()
    release = asyncio.Event()

    async def task():
        await release.wait()

    assert first.start("conv-1", task)
    assert second.start("conv-1", task)
    release.set()
    await first.wait_for("conv-1")
    await second.wait_for("conv-1")


@pytest.mark.asyncio
async def test_cancel_before_first_step_releases_lock():
    queue = SummarizationQueue()
    ran = []

    async def task():
        ran.append(True)

    queue.start("conv-1", task)
    pending = queue._tasks["conv-1"]
    pending.cancel()
    await asyncio.wait({pending})

    assert ran == []
    assert queue.status() == {"active": [], "tracked": []}
    assert queue.start("conv-1", task) is True
    await queue.wait_for("conv-1")
    assert ran == [True]
