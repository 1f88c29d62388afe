"""Redis client construction for the cache layer."""
from __future__ import annotations

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool

from medshop.core.logging import log_info, log_warning


__all__ = ["create_redis_client", "close_redis_client"]


def create_redis_client(redis_url: str | None) -> Redis | None:
    """Build a client for ``redis_url``; ``None`` when Redis is not configured."""

    if not redis_url:
        log_info("Redis URL not configured, cache will use process memory")
        return None

    try:
        pool = ConnectionPool.from_url(redis_url, decode_responses=True)
    except ValueError as exc:
        log_warning("Unable to configure Redis client", error=str(exc))
        return None
    return Redis(connection_pool=pool)


async def close_redis_client(client: Redis | None) -> None:
    """Close ``client`` and disconnect its connection pool."""

    if client is None:
        return
    try:
        await client.aclose()
    except Exception as exc:  # pragma: no cover - shutdown path
        log_warning("Error while closing Redis client", error=str(exc))
    try:
        await client.connection_pool.disconnect()
    except Exception as exc:  # pragma: no cover - shutdown path
        log_warning("Error while disconnecting Redis pool", error=str(exc))
