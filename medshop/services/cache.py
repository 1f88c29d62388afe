"""Read-through cache with tag invalidation.

Values live in Redis when it is configured and reachable. Any Redis failure
switches the service to an in-process store for ``retry_interval`` seconds,
after which Redis is tried again. The in-process store is per worker and is
swept for expired entries by a background task.
"""
from __future__ import annotations

import asyncio
import functools
import json
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, TypeVar
from uuid import UUID

from redis.asyncio import Redis
from redis.exceptions import RedisError

from medshop.core.logging import log_debug, log_warning


KEY_PREFIX = "medical:cache:"
TAG_PREFIX = "medical:tag:"

T = TypeVar("T")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serialisable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, separators=(",", ":"))


@dataclass
class _MemoryEntry:
    payload: str
    expires_at: float


class CacheService:
    def __init__(
        self,
        redis: Redis | None = None,
        *,
        default_ttl: int = 3600,
        retry_interval: float = 30.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = redis
        self.default_ttl = default_ttl
        self._retry_interval = retry_interval
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._retry_at = 0.0
        self._memory: dict[str, _MemoryEntry] = {}
        self._memory_tags: dict[str, set[str]] = {}
        self._sweeper: asyncio.Task | None = None

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    @staticmethod
    def _tag_key(tag: str) -> str:
        return f"{TAG_PREFIX}{tag}"

    @property
    def is_degraded(self) -> bool:
        """True while Redis is configured but being bypassed after an error."""
        return self._redis is not None and self._clock() < self._retry_at

    def _use_redis(self) -> bool:
        return self._redis is not None and not self.is_degraded

    def _degrade(self, operation: str, exc: Exception) -> None:
        self._retry_at = self._clock() + self._retry_interval
        log_warning(
            "Redis unavailable, using in-memory cache",
            operation=operation,
            retry_in=self._retry_interval,
            error=str(exc),
        )

    async def get(self, key: str) -> Any | None:
        cache_key = self._key(key)
        if self._use_redis():
            try:
                payload = await self._redis.get(cache_key)
            except (RedisError, OSError) as exc:
                self._degrade("get", exc)
            else:
                return json.loads(payload) if payload is not None else None
        return self._memory_get(cache_key)

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        ttl = ttl or self.default_ttl
        cache_key = self._key(key)
        payload = dumps(value)
        tag_list = list(tags or ())
        if self._use_redis():
            try:
                async with self._redis.pipeline(transaction=False) as pipe:
                    pipe.setex(cache_key, ttl, payload)
                    for tag in tag_list:
                        pipe.sadd(self._tag_key(tag), cache_key)
                        pipe.expire(self._tag_key(tag), ttl)
                    await pipe.execute()
                return
            except (RedisError, OSError) as exc:
                self._degrade("set", exc)
        self._memory[cache_key] = _MemoryEntry(payload, self._clock() + ttl)
        for tag in tag_list:
            self._memory_tags.setdefault(tag, set()).add(cache_key)

    async def delete(self, key: str) -> None:
        cache_key = self._key(key)
        if self._use_redis():
            try:
                await self._redis.delete(cache_key)
            except (RedisError, OSError) as exc:
                self._degrade("delete", exc)
        self._memory.pop(cache_key, None)

    async def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Drop every key stored under any of ``tags``; returns the key count."""
        removed = 0
        tag_list = list(tags)
        if self._use_redis():
            try:
                for tag in tag_list:
                    tag_key = self._tag_key(tag)
                    members = await self._redis.smembers(tag_key)
                    if members:
                        removed += await self._redis.delete(*members)
                    await self._redis.delete(tag_key)
            except (RedisError, OSError) as exc:
                self._degrade("invalidate", exc)
        for tag in tag_list:
            for cache_key in self._memory_tags.pop(tag, set()):
                if self._memory.pop(cache_key, None) is not None:
                    removed += 1
        log_debug("Cache tags invalidated", tags=",".join(tag_list), removed=removed)
        return removed

    async def flush(self) -> None:
        if self._use_redis():
            try:
                batch: list[str] = []
                async for key in self._redis.scan_iter(match="medical:*", count=500):
                    batch.append(key)
                    if len(batch) >= 500:
                        await self._redis.delete(*batch)
                        batch = []
                if batch:
                    await self._redis.delete(*batch)
            except (RedisError, OSError) as exc:
                self._degrade("flush", exc)
        self._memory.clear()
        self._memory_tags.clear()

    def _memory_get(self, cache_key: str) -> Any | None:
        entry = self._memory.get(cache_key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._memory[cache_key]
            return None
        return json.loads(entry.payload)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._memory.items() if entry.expires_at <= now]
        for key in expired:
            del self._memory[key]
        if expired:
            for keys in self._memory_tags.values():
                keys.difference_update(expired)
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.sweep()
            if removed:
                log_debug("Expired memory cache entries removed", count=removed)

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        task = self._sweeper
        self._sweeper = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def cached(
    *,
    ttl: int | None = None,
    tags: Iterable[str] = (),
    key_prefix: str | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Cache an async service method's result in ``self.cache``.

    The key combines the method's qualified name with its JSON-encoded
    arguments, so arguments must be JSON serialisable.
    """
    tag_list = tuple(tags)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        prefix = key_prefix or func.__qualname__

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            cache: CacheService | None = getattr(self, "cache", None)
            if cache is None:
                return await func(self, *args, **kwargs)
            key = f"{prefix}:{dumps([args, kwargs])}"
            hit = await cache.get(key)
            if hit is not None:
                return hit
            result = await func(self, *args, **kwargs)
            if result is not None:
                await cache.set(key, result, ttl=ttl, tags=tag_list)
            return result

        return wrapper

    return decorator
