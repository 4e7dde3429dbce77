"""用户权限缓存。

缓存值是可重新推导的派生数据，并发写入采用最后写入者胜出，无需加锁。
任何修改用户角色或权限的流程都必须在返回前调用 ``invalidate``。
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class PermissionCache(Protocol):
    """按用户 ID 缓存权限字符串列表。"""

    async def get(self, user_id: str) -> list[str] | None: ...

    async def set(self, user_id: str, permissions: list[str], ttl_seconds: int) -> None: ...

    async def invalidate(self, user_id: str) -> None: ...


class MemoryPermissionCache:
    """进程内缓存，过期时间自行记录。"""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[float, list[str]]] = {}

    async def get(self, user_id: str) -> list[str] | None:
        entry = self._entries.get(str(user_id))
        if entry is None:
            return None
        expires_at, permissions = entry
        if expires_at <= self._clock():
            self._entries.pop(str(user_id), None)
            return None
        return list(permissions)

    async def set(self, user_id: str, permissions: list[str], ttl_seconds: int) -> None:
        self._entries[str(user_id)] = (self._clock() + ttl_seconds, list(permissions))

    async def invalidate(self, user_id: str) -> None:
        self._entries.pop(str(user_id), None)

    def purge_expired(self) -> int:
        """清理已过期条目，返回清理数量。"""

        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisPermissionCache:
    """基于 Redis 的共享缓存，多个 HTTP worker 之间共用。"""

    def __init__(self, redis_factory: Callable[[], Awaitable[Any]], prefix: str = "opshub:perms:") -> None:
        self._redis_factory = redis_factory
        self._prefix = prefix

    def _key(self, user_id: str) -> str:
        return f"{self._prefix}{user_id}"

    async def get(self, user_id: str) -> list[str] | None:
        redis = await self._redis_factory()
        raw = await redis.get(self._key(user_id))
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("权限缓存内容损坏，已忽略 user=%s", user_id)
            return None
        if not isinstance(parsed, list):
            return None
        return [str(item) for item in parsed]

    async def set(self, user_id: str, permissions: list[str], ttl_seconds: int) -> None:
        redis = await self._redis_factory()
        payload = json.dumps(list(permissions), ensure_ascii=True, separators=(",", ":"))
        await redis.setex(self._key(user_id), ttl_seconds, payload)

    async def invalidate(self, user_id: str) -> None:
        redis = await self._redis_factory()
        await redis.delete(self._key(user_id))
