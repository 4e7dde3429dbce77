from __future__ import annotations

import json

import pytest

from opshub.services.permission_cache import MemoryPermissionCache, RedisPermissionCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str):
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_memory_cache_expires_entries() -> None:
    clock = FakeClock()
    cache = MemoryPermissionCache(clock=clock)

    await cache.set("u1", ["documents.read.own"], 300)
    assert await cache.get("u1") == ["documents.read.own"]

    clock.now += 299
    assert await cache.get("u1") == ["documents.read.own"]

    clock.now += 1
    assert await cache.get("u1") is None
    assert len(cache) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_memory_cache_invalidate_and_purge() -> None:
    clock = FakeClock()
    cache = MemoryPermissionCache(clock=clock)
    await cache.set("u1", ["a.b.own"], 10)
    await cache.set("u2", ["a.b.own"], 100)

    await cache.invalidate("u1")
    assert await cache.get("u1") is None

    clock.now += 200
    assert cache.purge_expired() == 1
    assert len(cache) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_memory_cache_returns_copies() -> None:
    cache = MemoryPermissionCache()
    await cache.set("u1", ["a.b.own"], 60)
    cached = await cache.get("u1")
    cached.append("x.y.own")
    assert await cache.get("u1") == ["a.b.own"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redis_cache_uses_prefix_and_ttl() -> None:
    redis = FakeRedis()

    async def factory():
        return redis

    cache = RedisPermissionCache(factory, prefix="test:perms:")
    await cache.set("u1", ["documents.read.own", "units.read.property"], 120)

    assert redis.ttls["test:perms:u1"] == 120
    assert json.loads(redis.data["test:perms:u1"]) == ["documents.read.own", "units.read.property"]
    assert await cache.get("u1") == ["documents.read.own", "units.read.property"]

    await cache.invalidate("u1")
    assert await cache.get("u1") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_redis_cache_ignores_corrupt_payload() -> None:
    redis = FakeRedis()
    redis.data["opshub:perms:u1"] = "{not json"
    redis.data["opshub:perms:u2"] = '{"a": 1}'

    async def factory():
        return redis

    cache = RedisPermissionCache(factory)
    assert await cache.get("u1") is None
    assert await cache.get("u2") is None
