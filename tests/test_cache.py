# link-analytics-service/tests/test_cache.py
from unittest.mock import AsyncMock

import pytest
from cache import AnalyticsCache


@pytest.fixture
def cache(redis_client):
    return AnalyticsCache(redis_client)


@pytest.mark.asyncio
async def test_remember_computes_once(cache):
    compute = AsyncMock(return_value={"total": 3})

    first = await cache.remember("owner1", "device_stats", 60, compute)
    second = await cache.remember("owner1", "device_stats", 60, compute)

    assert first == second == {"total": 3}
    compute.assert_awaited_once()


@pytest.mark.asyncio
async def test_remember_fresh_recomputes(cache):
    compute = AsyncMock(side_effect=[{"total": 1}, {"total": 2}])

    await cache.remember("owner1", "summary:30days", 30, compute)
    result = await cache.remember("owner1", "summary:30days", 30, compute, fresh=True)

    assert result == {"total": 2}
    assert cache.get("owner1", "summary:30days") == {"total": 2}


@pytest.mark.asyncio
async def test_remember_does_not_store_none(cache, redis_client):
    compute = AsyncMock(return_value=None)

    assert await cache.remember("owner1", "link:abc", 30, compute) is None
    assert await cache.remember("owner1", "link:abc", 30, compute) is None

    assert compute.await_count == 2
    assert redis_client.exists("analytics:owner1:link:abc") == 0


def test_put_sets_ttl_and_indexes_key(cache, redis_client):
    cache.put("owner1", "dashboard", {"a": 1}, ttl=30)

    assert 0 < redis_client.ttl("analytics:owner1:dashboard") <= 30
    assert redis_client.smembers("analytics:owner1:keys") == {"analytics:owner1:dashboard"}


def test_invalidate_removes_only_that_owner(cache, redis_client):
    cache.put("owner1", "dashboard", {"a": 1}, ttl=30)
    cache.put("owner1", "country_stats:10", {"b": 2}, ttl=60)
    cache.put("owner2", "dashboard", {"c": 3}, ttl=30)
    redis_client.set("unrelated", "keep")

    removed = cache.invalidate("owner1")

    assert removed == 2
    assert cache.get("owner1", "dashboard") is None
    assert cache.get("owner2", "dashboard") == {"c": 3}
    assert redis_client.get("unrelated") == "keep"
    assert redis_client.exists("analytics:owner1:keys") == 0


def test_invalidate_without_entries(cache):
    assert cache.invalidate("nobody") == 0
