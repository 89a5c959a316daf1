import asyncio

import pytest
from pydantic import ValidationError

from app.core.batching import run_in_batches
from app.core.config import Settings


@pytest.mark.asyncio
async def test_run_in_batches_limits_concurrency_and_keeps_order():
    in_flight = 0
    peak = 0

    async def work(n):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        if n == 4:
            raise RuntimeError("bad item")
        return n * 10

    results = await run_in_batches(list(range(8)), 3, work)

    assert peak == 3
    assert results[:4] == [0, 10, 20, 30]
    assert isinstance(results[4], RuntimeError)
    assert results[5:] == [50, 60, 70]


@pytest.mark.asyncio
async def test_run_in_batches_waits_for_whole_batch():
    events = []

    async def work(n):
        events.append(("start", n))
        # Later items finish first inside a batch
        await asyncio.sleep(0.01 * (3 - n % 3))
        events.append(("end", n))
        return n

    assert await run_in_batches(list(range(5)), 3, work) == [0, 1, 2, 3, 4]

    next_batch = events.index(("start", 3))
    for n in range(3):
        assert events.index(("end", n)) < next_batch
    assert events.index(("start", 4)) < events.index(("end", 3))


@pytest.mark.asyncio
async def test_run_in_batches_rejects_zero_batch():
    with pytest.raises(ValueError):
        await run_in_batches([1], 0, asyncio.sleep)


def test_settings_normalize_countries():
    settings = Settings(tmdb_api_key="k", schedule_countries=["kr", " jp ", ""])
    assert settings.schedule_countries == ["KR", "JP"]


def test_settings_reject_bad_proxy():
    with pytest.raises(ValidationError):
        Settings(tmdb_api_key="k", proxy="ftp://proxy:21")
    assert Settings(tmdb_api_key="k", proxy="socks5://127.0.0.1:1080").proxy
