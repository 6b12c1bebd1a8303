"""Tests for the outbound rate limiter."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import anyio
import pytest

from backend.utils import ratelimit
from backend.utils.ratelimit import Limiter, get_limiter


def run_jobs(limiter, count, duration=0.05):
    """Schedule ``count`` overlapping jobs and report start times and peak concurrency."""
    starts = []
    in_flight = 0
    peak = 0

    async def job(index):
        nonlocal in_flight, peak
        starts.append(time.monotonic())
        in_flight += 1
        peak = max(peak, in_flight)
        await anyio.sleep(duration)
        in_flight -= 1
        return index

    async def main():
        async with anyio.create_task_group() as tg:
            for i in range(count):
                tg.start_soon(limiter.schedule, job, i)

    anyio.run(main)
    return starts, peak


def test_one_job_at_a_time_with_spacing():
    limiter = Limiter(max_concurrent=1, min_time=0.2)
    starts, peak = run_jobs(limiter, 4)

    assert len(starts) == 4
    assert peak == 1
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.19 for gap in gaps)


def test_concurrency_cap_above_one():
    limiter = Limiter(max_concurrent=2, min_time=0)
    starts, peak = run_jobs(limiter, 6, duration=0.1)

    assert len(starts) == 6
    assert peak == 2


def test_schedule_returns_job_result():
    limiter = Limiter(max_concurrent=1, min_time=0)

    async def add(a, b=0):
        return a + b

    async def main():
        return await limiter.schedule(add, 2, b=3)

    assert anyio.run(main) == 5


def test_job_errors_propagate():
    limiter = Limiter(max_concurrent=1, min_time=0)

    async def boom():
        raise RuntimeError("upstream down")

    async def main():
        await limiter.schedule(boom)

    with pytest.raises(RuntimeError, match="upstream down"):
        anyio.run(main)


@pytest.mark.parametrize("kwargs", [{"max_concurrent": 0}, {"min_time": -1}])
def test_invalid_parameters(kwargs):
    with pytest.raises(ValueError):
        Limiter(**kwargs)


def test_process_wide_limiter_is_created_once(monkeypatch):
    monkeypatch.setattr(ratelimit, "_limiter", None)

    first = get_limiter()
    second = get_limiter()

    assert first is second
    assert first.max_concurrent == 1
    assert first.min_time == ratelimit.MIN_INTERVAL_SECS


def test_process_wide_limiter_is_shared_across_threads(monkeypatch):
    monkeypatch.setattr(ratelimit, "_limiter", None)
    barrier = threading.Barrier(8)

    def fetch(_):
        barrier.wait()
        return get_limiter()

    with ThreadPoolExecutor(max_workers=8) as pool:
        limiters = list(pool.map(fetch, range(8)))

    assert all(limiter is limiters[0] for limiter in limiters)
