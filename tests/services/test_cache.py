from __future__ import annotations

import pytest

from castlink.services import cache as cache_module
from castlink.services.cache import InMemoryCache, RedisCache, cache_key, get_cache


def test_cache_key_is_namespaced() -> None:
    assert cache_key("tmdb", "credits", 42) == "castlink:tmdb:credits:42"


@pytest.mark.asyncio
async def test_remember_only_creates_once() -> None:
    cache = InMemoryCache()
    calls = {"count": 0}

    async def creator() -> dict:
        calls["count"] += 1
        return {"value": calls["count"]}

    first = await cache.remember("key", 60, creator)
    second = await cache.remember("key", 60, creator)

    assert first == second == {"value": 1}
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_expired_entries_are_dropped(monkeypatch: pytest.MonkeyPatch) -> None:
    cache = InMemoryCache()
    now = {"value": 100.0}
    monkeypatch.setattr(cache_module.time, "monotonic", lambda: now["value"])

    await cache.set("key", "v", ttl=10)
    assert await cache.get("key") == "v"

    now["value"] = 111.0
    assert await cache.get("key") is None


@pytest.mark.asyncio
async def test_setting_none_deletes() -> None:
    cache = InMemoryCache()
    await cache.set("key", [1, 2])
    await cache.set("key", None)

    assert await cache.get("key") is None


@pytest.mark.asyncio
async def test_get_cache_picks_backend() -> None:
    cache_module.reset_cache()
    memory = await get_cache("")
    assert isinstance(memory, InMemoryCache)
    assert await get_cache() is memory

    cache_module.reset_cache()
    redis_backed = await get_cache("redis://localhost:6379/0")
    assert isinstance(redis_backed, RedisCache)
    cache_module.reset_cache()
