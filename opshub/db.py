"""数据库初始化与连接管理。"""

from __future__ import annotations

from typing import Any, cast

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from .config import MONGO_DB, MONGO_URL
from .models import CustomRole, Permission, User, UserCustomRole, UserPermission

DOCUMENT_MODELS = [User, Permission, CustomRole, UserCustomRole, UserPermission]

_mongo_client: AsyncIOMotorClient | None = None


async def init_db(database: str | None = None) -> None:
    """初始化 Beanie，并保留客户端用于关闭。"""
    global _mongo_client
    _mongo_client = AsyncIOMotorClient(MONGO_URL)
    await init_beanie(
        database=cast(Any, _mongo_client[database or MONGO_DB]),
        document_models=DOCUMENT_MODELS,
    )


async def close_db() -> None:
    """关闭 Mongo 连接。"""
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
