# link-analytics-service/cache.py
import json
import logging
from typing import Any, Awaitable, Callable, Generator, Optional

import redis
from config import get_settings

logger = logging.getLogger(__name__)

# Upper bound for the per-owner key index; the cached entries themselves expire much sooner.
KEY_INDEX_TTL = 3600


def get_redis_client_instance() -> redis.Redis:
    """
    Returns a new Redis client instance.
    Used by the request dependency below and by the background worker.
    """
    settings = get_settings()
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )
    try:
        client.ping()
        logger.debug(
            "Connected to Redis",
            extra={"redis_host": settings.redis_host, "redis_port": settings.redis_port},
        )
    except redis.exceptions.ConnectionError:
        logger.exception("Redis connection failed")
        raise
    return client


def get_redis_db() -> Generator[redis.Redis, None, None]:
    """
    Dependency that provides a Redis client and handles its closing.
    """
    redis_client = get_redis_client_instance()
    try:
        yield redis_client
    finally:
        if redis_client:
            redis_client.close()


class AnalyticsCache:
    """
    Short-lived cache for analytics payloads, scoped per owner.

    Entries live under `analytics:{owner}:{kind}` as JSON strings with their own TTL.
    Every key written for an owner is also added to `analytics:{owner}:keys`, so
    `invalidate()` removes exactly that owner's entries and nothing else.
    """

    def __init__(self, client: redis.Redis, prefix: str = "analytics"):
        self.client = client
        self.prefix = prefix

    def key(self, owner_id: Any, kind: str) -> str:
        return f"{self.prefix}:{owner_id}:{kind}"

    def index_key(self, owner_id: Any) -> str:
        return f"{self.prefix}:{owner_id}:keys"

    def get(self, owner_id: Any, kind: str) -> Optional[Any]:
        cached = self.client.get(self.key(owner_id, kind))
        if cached is None:
            return None
        return json.loads(cached)

    def put(self, owner_id: Any, kind: str, value: Any, ttl: int) -> str:
        key = self.key(owner_id, kind)
        payload = json.dumps(value)
        with self.client.pipeline() as pipe:
            pipe.set(key, payload, ex=ttl)
            pipe.sadd(self.index_key(owner_id), key)
            pipe.expire(self.index_key(owner_id), KEY_INDEX_TTL)
            pipe.execute()
        return payload

    def forget(self, owner_id: Any, kind: str) -> None:
        key = self.key(owner_id, kind)
        self.client.delete(key)
        self.client.srem(self.index_key(owner_id), key)

    async def remember(
        self,
        owner_id: Any,
        kind: str,
        ttl: int,
        compute: Callable[[], Awaitable[Any]],
        fresh: bool = False,
    ) -> Any:
        """
        Returns the cached value for (owner, kind), computing and storing it on a miss.
        `fresh=True` clears the entry first and always recomputes.
        A computed `None` is returned but never stored.
        """
        if fresh:
            self.forget(owner_id, kind)
        else:
            cached = self.get(owner_id, kind)
            if cached is not None:
                logger.debug("Analytics cache hit", extra={"cache_key": self.key(owner_id, kind)})
                return cached

        value = await compute()
        if value is None:
            return None
        payload = self.put(owner_id, kind, value, ttl)
        # Hand back the serialized form so a later cache hit is indistinguishable.
        return json.loads(payload)

    def invalidate(self, owner_id: Any) -> int:
        index_key = self.index_key(owner_id)
        keys = list(self.client.smembers(index_key))
        removed = 0
        if keys:
            removed = self.client.delete(*keys)
        self.client.delete(index_key)
        logger.debug(
            "Analytics cache invalidated",
            extra={"owner_id": str(owner_id), "removed_keys": removed},
        )
        return removed
