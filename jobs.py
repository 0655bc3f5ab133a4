# link-analytics-service/jobs.py
"""
Handlers for jobs consumed from the click queue.

Delivery is at-least-once, so a redelivered message increments again. The
counter may lag behind the hit records until the job has run.
"""
import logging
from typing import Any

import redis
from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Inc
from cache import AnalyticsCache
from messaging import INCREMENT_LINK_CLICKS
from models import Link

logger = logging.getLogger(__name__)


class UnknownJobError(ValueError):
    pass


async def increment_link_clicks(link_id: Any) -> None:
    # Single-document $inc; concurrent jobs for the same link never lose updates.
    await Link.find_one(Link.id == PydanticObjectId(link_id)).update(Inc({Link.clicks: 1}))


async def handle_click_job(payload: dict, redis_client: redis.Redis) -> None:
    job = payload.get("job")
    if job != INCREMENT_LINK_CLICKS:
        raise UnknownJobError(f"Unknown job: {job!r}")

    link_id = payload["link_id"]
    await increment_link_clicks(link_id)

    user_id = payload.get("user_id")
    if user_id:
        AnalyticsCache(redis_client).invalidate(user_id)

    logger.info("Click job handled", extra={"link_id": link_id, "user_id": user_id})
