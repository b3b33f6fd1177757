import asyncio

import pytest

from app.services.background_tasks import DetachedTaskRunner


pytestmark = pytest.mark.anyio


async def test_spawn_returns_before_the_task_finishes():
    release = asyncio.Event()
    done = []

    async def job():
        await release.wait()
        done.append(True)

    runner = DetachedTaskRunner()
    runner.spawn(job(), name="job")
    assert runner.pending == 1
    assert done == []

    release.set()
    await runner.drain()
    assert done == [True]
    assert runner.pending == 0


async def test_failures_go_to_the_error_sink():
    errors = []
    runner = DetachedTaskRunner(error_sink=lambda name, exc: errors.append((name, str(exc))))

    async def boom():
        raise RuntimeError("store down")

    runner.spawn(boom(), name="persist")
    await runner.drain()

    assert errors == [("persist", "store down")]


async def test_broken_error_sink_is_contained():
    def sink(name, exc):
        raise ValueError("sink broke")

    runner = DetachedTaskRunner(error_sink=sink)

    async def boom():
        raise RuntimeError("x")

    runner.spawn(boom(), name="persist")
    await runner.drain()
    assert runner.pending == 0


async def test_drain_timeout_leaves_slow_tasks_running():
    runner = DetachedTaskRunner()
    task = runner.spawn(asyncio.sleep(10), name="slow")

    await runner.drain(timeout=0.01)

    assert runner.pending == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
