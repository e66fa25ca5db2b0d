"""Tests for the background task runner and periodic loop."""

import asyncio

import pytest

from photofeed.services.background import BackgroundTasks, run_periodically


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_keeps_reference_until_done(self):
        tasks = BackgroundTasks()
        gate = asyncio.Event()

        async def work():
            await gate.wait()

        tasks.spawn(work(), name="work")
        assert len(tasks) == 1

        gate.set()
        await tasks.drain()
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_error_sink_receives_exception(self):
        tasks = BackgroundTasks()
        seen: list[BaseException] = []

        async def boom():
            raise RuntimeError("boom")

        tasks.spawn(boom(), name="boom", on_error=seen.append)
        await tasks.drain()
        await asyncio.sleep(0)

        assert len(seen) == 1
        assert str(seen[0]) == "boom"

    @pytest.mark.asyncio
    async def test_failing_sink_is_contained(self):
        tasks = BackgroundTasks()

        async def boom():
            raise RuntimeError("boom")

        def bad_sink(exc):
            raise ValueError("sink")

        tasks.spawn(boom(), name="boom", on_error=bad_sink)
        await tasks.drain()
        await asyncio.sleep(0)

        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(60), name="sleeper")

        await tasks.cancel_all()

        assert task.cancelled()
        assert len(tasks) == 0


class TestRunPeriodically:
    @pytest.mark.asyncio
    async def test_failures_do_not_stop_loop(self):
        runs = 0

        async def job():
            nonlocal runs
            runs += 1
            if runs == 1:
                raise RuntimeError("first run fails")

        loop_task = asyncio.create_task(run_periodically(job, 0.01, name="job"))
        while runs < 3:
            await asyncio.sleep(0.01)
        loop_task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await loop_task
        assert runs >= 3
