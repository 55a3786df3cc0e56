from datetime import timedelta

import pytest

from agent.query_normalizer import cache_key
from fakes import BASE_TIME
from services.cache_service import WebSearchCache


class Clock:
    def __init__(self):
        self.now = BASE_TIME

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(store, clock):
    return WebSearchCache(store, clock=clock)


@pytest.mark.asyncio
async def test_set_then_get(cache):
    normalized, digest = cache_key("Wedding florists Lisbon")
    entry = await cache.set(digest, normalized, {"answer": "A", "results": [], "query": "q"})

    assert entry.expires_at - entry.created_at == timedelta(days=7)
    assert entry.hit_count == 0

    cached = await cache.get(digest)
    assert cached.results["answer"] == "A"
    assert cached.query == "florists lisbon wedding"


@pytest.mark.asyncio
async def test_missing_key_is_a_miss(cache):
    assert await cache.get("0" * 64) is None


@pytest.mark.asyncio
async def test_entry_expires_at_ttl(cache, clock):
    await cache.set("h", "q", {"results": []}, ttl=timedelta(hours=1))

    clock.now = BASE_TIME + timedelta(minutes=59)
    assert await cache.get("h") is not None

    clock.now = BASE_TIME + timedelta(hours=1)
    assert await cache.get("h") is None


@pytest.mark.asyncio
async def test_record_hit_updates_counters(store, cache, clock):
    await cache.set("h", "q", {"results": []})
    clock.now = BASE_TIME + timedelta(minutes=5)

    await cache.record_hit("h")
    await cache.record_hit("h")

    [entry] = store.cache
    assert entry.hit_count == 2
    assert entry.last_accessed_at == BASE_TIME + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_set_never_updates_existing_rows(store, cache, clock):
    await cache.set("h", "q", {"answer": "old"})
    clock.now = BASE_TIME + timedelta(days=8)
    await cache.set("h", "q", {"answer": "new"})

    assert [e.results["answer"] for e in store.cache] == ["old", "new"]
    assert (await cache.get("h")).results["answer"] == "new"
