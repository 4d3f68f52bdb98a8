import asyncio

import pytest

from shared.cache.query_cache import QueryCache


async def test_second_fetch_is_served_from_cache():
    cache = QueryCache(ttl_seconds=60, retries=0)
    calls = []

    async def loader():
        calls.append(1)
        return "value"

    assert await cache.fetch(("k",), loader) == "value"
    assert await cache.fetch(("k",), loader) == "value"
    assert len(calls) == 1
    assert cache.peek(("k",)) == "value"


async def test_concurrent_callers_share_one_load():
    cache = QueryCache(retries=0)
    release = asyncio.Event()
    calls = []

    async def loader():
        calls.append(1)
        await release.wait()
        return 42

    tasks = [asyncio.create_task(cache.fetch("lock", loader)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()

    assert await asyncio.gather(*tasks) == [42] * 5
    assert len(calls) == 1


async def test_failures_are_retried_then_not_cached():
    cache = QueryCache(retries=2, retry_delay=0, retry_on=(ConnectionError,))
    calls = []

    async def failing():
        calls.append(1)
        raise ConnectionError("rpc down")

    with pytest.raises(ConnectionError):
        await cache.fetch("k", failing)

    assert len(calls) == 3
    assert cache.peek("k") is None

    async def healthy():
        return "recovered"

    assert await cache.fetch("k", healthy) == "recovered"


async def test_waiters_receive_the_loader_error():
    cache = QueryCache(retries=0)
    release = asyncio.Event()

    async def loader():
        await release.wait()
        raise RuntimeError("boom")

    first = asyncio.create_task(cache.fetch("k", loader))
    await asyncio.sleep(0)
    second = asyncio.create_task(cache.fetch("k", loader))
    await asyncio.sleep(0)
    release.set()

    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)


async def test_invalidate_by_predicate():
    cache = QueryCache(retries=0)

    async def value():
        return 1

    await cache.fetch(("lock-state", "0xaaa", 1), value)
    await cache.fetch(("lock-state", "0xbbb", 1), value)

    removed = cache.invalidate(lambda key: key[1] == "0xaaa")

    assert removed == 1
    assert cache.peek(("lock-state", "0xaaa", 1)) is None
    assert cache.peek(("lock-state", "0xbbb", 1)) == 1
    assert cache.invalidate() == 1
