import asyncio

import pytest

from orchestration.periodic import PeriodicTask


def test_overlapping_tick_is_skipped():
    async def scenario():
        release = asyncio.Event()
        calls = []

        async def work():
            calls.append(len(calls))
            await release.wait()
            return "done"

        task = PeriodicTask("exits", 60, work)
        first = asyncio.ensure_future(task.run_once())
        await asyncio.sleep(0)
        skipped = await task.run_once()
        release.set()
        return await first, skipped, task, calls

    first, skipped, task, calls = asyncio.run(scenario())
    assert first == "done"
    assert skipped is None
    assert task.skipped_ticks == 1
    assert task.runs == 1
    assert calls == [0]
    assert task.last_result == "done"


def test_failures_are_counted_and_loop_survives():
    async def scenario():
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("provider down")
            return len(attempts)

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        assert task.running
        await asyncio.sleep(0.05)
        await task.stop()
        return task

    task = asyncio.run(scenario())
    assert task.failures == 1
    assert task.runs >= 2
    assert task.last_result >= 2
    assert not task.running


def test_slow_run_skips_loop_ticks():
    async def scenario():
        async def slow():
            await asyncio.sleep(0.05)

        task = PeriodicTask("slow", 0.01, slow)
        task.start()
        await asyncio.sleep(0.035)
        await task.stop()
        return task

    task = asyncio.run(scenario())
    assert task.skipped_ticks >= 1
    assert task.runs == 1


def test_interval_must_be_positive():
    async def noop():
        return None

    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, noop)
