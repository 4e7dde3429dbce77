"""Redis 连接服务（权限缓存共享后端）。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from opshub.config import REDIS_URL

logger = logging.getLogger(__name__)

_redis_client: Any = None
_redis_lock = asyncio.Lock()


async def get_redis() -> Any:
    """获取进程级 Redis 客户端（懒加载单例）。"""

    global _redis_client
    if _redis_client is not None:
        return _redis_client

    async with _redis_lock:
        if _redis_client is None:
            _redis_client = Redis.from_url(
                REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
    return _redis_client


async def redis_available() -> bool:
    """探测 Redis 是否可用，启动阶段用于选择缓存后端。"""

    try:
        redis = await get_redis()
        return bool(await redis.ping())
    except (RedisError, OSError):
        logger.warning("Redis 不可用: %s", REDIS_URL, exc_info=True)
        return False


async def close_redis() -> None:
    """关闭 Redis 客户端连接。"""

    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None
