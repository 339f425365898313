"""Shared Redis client for rate-limit counters and live notification fan-out.

Redis is optional: when ``LEARNHUB_REDIS_URL`` is empty the client is never
opened, requests are not throttled and notifications are only stored.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
        health_check_interval=30,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis_or_none() -> redis.Redis | None:
    """The open client, or None when Redis is not configured."""
    return _client


def user_channel(user_id: int) -> str:
    """Pub/sub channel the websocket gateway listens on for one user."""
    return f"ws:user:{user_id}"


async def count_hit(key: str, ttl_seconds: int) -> int | None:
    """Increment a fixed-window counter and return its new value.

    Returns None when Redis is not configured.
    """
    if _client is None:
        return None
    pipe = _client.pipeline()
    pipe.incr(key)
    pipe.expire(key, ttl_seconds)
    results: list[Any] = await pipe.execute()
    return int(results[0])


async def publish_json(channel: str, payload: dict[str, Any]) -> bool:
    """Publish a JSON message. Delivery is best effort: failures are logged."""
    if _client is None:
        return False
    try:
        await _client.publish(channel, json.dumps(payload))
    except RedisError:
        logger.warning("Failed to publish to %s", channel, exc_info=True)
        return False
    return True
