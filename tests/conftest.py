from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Mapping
from uuid import uuid4

import pytest
import pytest_asyncio

from opshub.services import authz_service
from opshub.services.permission_cache import MemoryPermissionCache
from opshub.services.permission_store import CustomRoleGrant, DirectPermission, RoleCount
from opshub.services.principal import CurrentUser


class FakePermissionStore:
    """内存版权限存储，记录调用次数；``error`` 非空时所有读取都抛出。"""

    def __init__(self) -> None:
        self.grants: dict[str, list[CustomRoleGrant]] = {}
        self.direct: dict[str, list[DirectPermission]] = {}
        self.role_counts: list[RoleCount] = []
        self.users: list[Any] = []
        self.calls = 0
        self.error: Exception | None = None
        self.last_filters: Mapping[str, Any] | None = None

    def grant_role(self, user_id: str, *permissions: str, expires_at: datetime | None = None, is_active: bool = True) -> None:
        self.grants.setdefault(user_id, []).append(
            CustomRoleGrant(
                role_id=f"role-{len(self.grants.get(user_id, []))}",
                role_name="Custom",
                permissions=tuple(permissions),
                is_active=is_active,
                expires_at=expires_at,
            )
        )

    def set_direct(
        self,
        user_id: str,
        permission: str,
        *,
        granted: bool = True,
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> None:
        self.direct.setdefault(user_id, []).append(
            DirectPermission(permission=permission, granted=granted, is_active=is_active, expires_at=expires_at)
        )

    async def find_active_custom_role_assignments(self, user_id: str, now: datetime) -> list[CustomRoleGrant]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.grants.get(user_id, []))

    async def find_active_user_permissions(self, user_id: str, now: datetime) -> list[DirectPermission]:
        if self.error is not None:
            raise self.error
        return list(self.direct.get(user_id, []))

    async def count_users_by_role(self, filters: Mapping[str, Any] | None = None) -> list[RoleCount]:
        self.last_filters = filters
        return list(self.role_counts)

    async def find_users_by_role(self, role: str, filters: Mapping[str, Any] | None = None) -> list[Any]:
        self.last_filters = filters
        return [user for user in self.users if getattr(user, "role", None) == role]


@pytest.fixture
def store() -> FakePermissionStore:
    return FakePermissionStore()


@pytest.fixture
def cache() -> MemoryPermissionCache:
    return MemoryPermissionCache()


@pytest.fixture
def components(store: FakePermissionStore, cache: MemoryPermissionCache):
    """装配使用假存储的鉴权组件，并注册为进程级单例。"""

    built = authz_service.build_components(store, cache, ttl_seconds=300, timeout_seconds=1.0)
    authz_service.set_components(built)
    yield built
    authz_service.set_components(None)


@pytest.fixture
def make_user():
    def _make(role: str = "STAFF", **overrides: Any) -> CurrentUser:
        values: dict[str, Any] = {
            "id": overrides.pop("id", "user-1"),
            "role": role,
            "organization_id": "org-1",
            "property_id": "prop-1",
            "department_id": "dept-1",
        }
        values.update(overrides)
        return CurrentUser(**values)

    return _make


@pytest_asyncio.fixture
async def initialized_db():
    """连接真实 MongoDB（使用一次性数据库），不可达时跳过。"""

    from motor.motor_asyncio import AsyncIOMotorClient
    from pymongo.errors import PyMongoError

    from opshub import db
    from opshub.config import MONGO_URL

    probe = AsyncIOMotorClient(MONGO_URL, serverSelectionTimeoutMS=1000)
    try:
        await probe.admin.command("ping")
    except PyMongoError:
        pytest.skip("MongoDB 不可用")
    finally:
        probe.close()

    database = os.getenv("MONGO_TEST_DB") or f"opshub_test_{uuid4().hex[:8]}"
    await db.init_db(database)
    try:
        yield database
    finally:
        cleanup = AsyncIOMotorClient(MONGO_URL)
        await cleanup.drop_database(database)
        cleanup.close()
        await db.close_db()
