from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from redis.asyncio import Redis

from ..core.config import settings

KEY_PREFIX = "castlink"


def cache_key(*parts: object) -> str:
    """Build a namespaced key such as ``castlink:tmdb:credits:42``."""

    return ":".join([KEY_PREFIX, *(str(part) for part in parts)])


class CacheBackend(ABC):
    """Async key/value cache holding JSON-compatible values."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def remember(
        self,
        key: str,
        ttl: int | None,
        creator: Callable[[], Awaitable[Any]],
    ) -> Any:
        existing = await self.get(key)
        if existing is not None:
            return existing
        value = await creator()
        await self.set(key, value, ttl)
        return value


class InMemoryCache(CacheBackend):
    """Process-local cache with per-entry expiry."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if value is None:
            await self.delete(key)
            return
        expires_at = time.monotonic() + ttl if ttl else None
        async with self._lock:
            self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisCache(CacheBackend):
    """Cache shared between API instances through Redis."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if value is None:
            await self.delete(key)
            return
        payload = json.dumps(value, ensure_ascii=False)
        await self._client.set(key, payload, ex=ttl or None)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)


_cache: Optional[CacheBackend] = None


async def get_cache(redis_url: str | None = None) -> CacheBackend:
    global _cache
    if _cache is not None:
        return _cache
    url = redis_url if redis_url is not None else settings.redis_url
    _cache = RedisCache.from_url(url) if url else InMemoryCache()
    return _cache


def reset_cache() -> None:
    global _cache
    _cache = None
