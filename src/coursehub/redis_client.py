"""Process-wide Redis client used for rate limiting and notification pub/sub.

Redis is optional: every caller goes through ``get_optional_redis`` or handles
the ``RuntimeError`` from ``get_redis`` and degrades to a no-op.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 50) -> None:
    """Create the shared client. Connections are opened lazily."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client. Raises ``RuntimeError`` before ``init_redis``."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


def get_optional_redis() -> redis.Redis | None:
    return _client


async def publish_json(client: Any, channel: str, payload: dict[str, Any]) -> bool:  # noqa: ANN401
    """Publish a JSON message; returns False instead of raising on Redis errors."""
    if client is None:
        return False
    try:
        await client.publish(channel, json.dumps(payload, default=str))
    except Exception:
        logger.warning("Failed to publish to %s", channel, exc_info=True)
        return False
    return True
