import pytest

from cachedns import admin
from cachedns.records import Record


@pytest.mark.asyncio
async def test_add_record_leaves_cold_pair_uncached(store, cache, redis_client):
    await admin.add_record(store, cache, Record("example.com", "A", 300, "203.0.113.5"))

    assert len(await store.lookup("example.com", "A")) == 1
    assert redis_client.calls.get("set", 0) == 0


@pytest.mark.asyncio
async def test_add_record_refreshes_existing_cache_entry(store, cache):
    await store.upsert(Record("example.com", "A", 300, "203.0.113.5"))
    await admin.warm_cache(store, cache, "example.com", "A")

    await admin.add_record(store, cache, Record("example.com", "A", 300, "203.0.113.6"))

    cached = await cache.get_records("example.com", "A")
    assert [r.value for r in cached] == ["203.0.113.5", "203.0.113.6"]


@pytest.mark.asyncio
async def test_warm_cache_requires_records(store, cache):
    with pytest.raises(LookupError):
        await admin.warm_cache(store, cache, "missing.example", "A")


@pytest.mark.asyncio
async def test_warm_then_evict(store, cache):
    await store.upsert(Record("example.com", "TXT", 60, "hello"))

    assert await admin.warm_cache(store, cache, "example.com", "TXT") == 1
    assert await cache.exists(cache.key("example.com", "TXT"))

    assert await admin.evict_cache(cache, "example.com", "TXT") is True
    assert await cache.get_records("example.com", "TXT") is None


@pytest.mark.asyncio
async def test_delete_records_drops_rows_and_cache(store, cache):
    await store.upsert(Record("example.com", "A", 300, "203.0.113.5"))
    await admin.warm_cache(store, cache, "example.com", "A")

    assert await admin.delete_records(store, cache, "example.com", "A") == 1
    assert await admin.list_records(store) == []
    assert not await cache.exists(cache.key("example.com", "A"))
