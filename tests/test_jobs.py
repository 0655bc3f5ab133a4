# link-analytics-service/tests/test_jobs.py
import asyncio

import pytest
from cache import AnalyticsCache
from jobs import UnknownJobError, handle_click_job, increment_link_clicks
from models import Link, Redirect


def click_job(link, user):
    return {"job": "increment_link_clicks", "link_id": str(link.id), "user_id": str(user.id)}


@pytest.mark.asyncio
async def test_increment_link_clicks(user, make_link):
    link = await make_link(user, "count")

    await increment_link_clicks(link.id)

    assert (await Link.get(link.id)).clicks == 1


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(user, make_link):
    link = await make_link(user, "race")

    await asyncio.gather(increment_link_clicks(link.id), increment_link_clicks(str(link.id)))

    assert (await Link.get(link.id)).clicks == 2


@pytest.mark.asyncio
async def test_counter_matches_hits_after_jobs_run(client, user, make_link, publishers, redis_client):
    link = await make_link(user, "tally")

    for _ in range(3):
        assert (await client.get("/tally")).status_code == 302

    # Replay what the redirects queued, the way the worker would.
    for call in publishers.publish.call_args_list:
        link_id, user_id = call.args
        await handle_click_job(
            {"job": "increment_link_clicks", "link_id": str(link_id), "user_id": str(user_id)},
            redis_client,
        )

    stored = await Link.get(link.id)
    assert stored.clicks == await Redirect.find(Redirect.link_id == link.id).count() == 3


@pytest.mark.asyncio
async def test_click_job_invalidates_owner_cache_only(user, other_user, make_link, redis_client):
    link = await make_link(user, "inval")
    cache = AnalyticsCache(redis_client)
    cache.put(user.id, "dashboard", {"total_clicks_scans": 0}, ttl=30)
    cache.put(other_user.id, "dashboard", {"total_clicks_scans": 5}, ttl=30)

    await handle_click_job(click_job(link, user), redis_client)

    assert cache.get(user.id, "dashboard") is None
    assert cache.get(other_user.id, "dashboard") == {"total_clicks_scans": 5}


@pytest.mark.asyncio
async def test_unknown_job_is_rejected(user, make_link, redis_client):
    link = await make_link(user, "unknown")

    with pytest.raises(UnknownJobError):
        await handle_click_job({"job": "reindex", "link_id": str(link.id)}, redis_client)

    assert (await Link.get(link.id)).clicks == 0
