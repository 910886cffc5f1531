"""
Tests for the bounded concurrency task runner.
"""
import asyncio

import pytest

from lptrace.core.errors import ConfigurationError
from lptrace.core.use_cases.task_runner import TaskRunner


def sleeper(value, delay=0.01):
    async def task():
        await asyncio.sleep(delay)
        return value
    return task


async def test_never_exceeds_limit():
    runner = TaskRunner(3)
    outcomes = await runner.run([sleeper(i) for i in range(20)])
    assert len(outcomes) == 20
    assert runner.peak_running <= 3
    assert runner.running == 0
    assert sorted(o.value for o in outcomes) == list(range(20))


async def test_failure_does_not_cancel_siblings():
    async def boom():
        raise RuntimeError("boom")

    runner = TaskRunner(2)
    outcomes = await runner.run({"a": sleeper("a"), "b": boom, "c": sleeper("c")})
    by_key = {o.key: o for o in outcomes}
    assert by_key["a"].ok and by_key["a"].value == "a"
    assert by_key["c"].ok and by_key["c"].value == "c"
    assert not by_key["b"].ok
    assert isinstance(by_key["b"].error, RuntimeError)


async def test_empty_input_completes_immediately():
    runner = TaskRunner(5)
    assert await runner.run([]) == []
    assert runner.peak_running == 0


async def test_on_complete_sees_every_outcome():
    seen = []
    runner = TaskRunner(1)
    await runner.run([sleeper(i, 0) for i in range(4)], on_complete=seen.append)
    assert len(seen) == 4
    # limit 1 admits tasks in submission order
    assert [o.value for o in seen] == [0, 1, 2, 3]


def test_limit_must_be_positive():
    with pytest.raises(ConfigurationError):
        TaskRunner(0)
