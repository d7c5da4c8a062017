"""Tests for per-worker politeness throttling."""

import asyncio
import time

import pytest

from catalog_sync.ingest import rate_limiter
from catalog_sync.ingest.rate_limiter import PolitenessLimiter

# asyncio timers may fire a hair early
SLACK = 0.01


@pytest.mark.asyncio
async def test_first_request_is_not_delayed():
    limiter = PolitenessLimiter(interval=0.5)
    assert await limiter.acquire("worker-0") == 0.0


@pytest.mark.asyncio
async def test_gap_between_requests_of_one_worker():
    limiter = PolitenessLimiter(interval=0.1)
    stamps = []
    for _ in range(4):
        await limiter.acquire("worker-0")
        stamps.append(time.monotonic())

    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert all(gap >= 0.1 - SLACK for gap in gaps), gaps


@pytest.mark.asyncio
async def test_concurrent_acquires_of_one_worker_are_serialized():
    limiter = PolitenessLimiter(interval=0.1)

    async def stamp():
        await limiter.acquire("worker-0")
        return time.monotonic()

    stamps = sorted(await asyncio.gather(*(stamp() for _ in range(3))))
    assert stamps[2] - stamps[0] >= 0.2 - SLACK


@pytest.mark.asyncio
async def test_workers_do_not_wait_for_each_other():
    limiter = PolitenessLimiter(interval=1.0)
    await limiter.acquire("worker-0")

    started = time.monotonic()
    assert await limiter.acquire("worker-1") == 0.0
    assert time.monotonic() - started < 0.5


@pytest.mark.asyncio
async def test_reset_forgets_previous_requests():
    limiter = PolitenessLimiter(interval=1.0)
    await limiter.acquire("worker-0")

    limiter.reset()

    assert await limiter.acquire("worker-0") == 0.0


@pytest.mark.asyncio
async def test_jitter_extends_the_interval(monkeypatch):
    monkeypatch.setattr(rate_limiter.random, "uniform", lambda low, high: high)
    limiter = PolitenessLimiter(interval=0.05, jitter=0.05)

    await limiter.acquire("worker-0")
    waited = await limiter.acquire("worker-0")

    assert waited > 0.05
    assert waited <= 0.1
