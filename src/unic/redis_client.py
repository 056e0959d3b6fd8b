"""Redis client and the engine's pub/sub event channels.

Redis carries the scheduler lock and completion events only; the database
stays the source of truth, so every publish is best effort.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

CONTEST_COMPLETED = "pubsub:contest_completed"
PRIZE_SENT = "pubsub:prize_sent"
SECOND_CHANCE_DRAWN = "pubsub:second_chance_drawn"

_client: redis.Redis | None = None


def create_redis(url: str, max_connections: int = 50) -> redis.Redis:
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(url: str) -> None:
    global _client  # noqa: PLW0603
    _client = create_redis(url)


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
    _client = None


def get_redis() -> redis.Redis:
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


async def publish_event(client: redis.Redis | None, channel: str, payload: dict[str, Any]) -> None:
    """Publish a JSON event. Failures are logged, never raised."""
    if client is None:
        return
    try:
        await client.publish(channel, json.dumps(payload, default=str))
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
