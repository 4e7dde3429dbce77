"""权限数据读取层。

解析器只依赖 ``PermissionStore`` 协议描述的查询形状，不关心底层存储；
``BeaniePermissionStore`` 是基于 MongoDB 的默认实现。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

from beanie import PydanticObjectId
from bson.errors import InvalidId

from opshub.models import CustomRole, Permission, User, UserCustomRole, UserPermission


def as_utc(value: datetime | None) -> datetime | None:
    """Mongo 默认返回 naive UTC 时间，这里统一补齐时区。"""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_current(is_active: bool, expires_at: datetime | None, now: datetime) -> bool:
    """激活且未过期。"""

    if not is_active:
        return False
    expires = as_utc(expires_at)
    return expires is None or expires > now


@dataclass(frozen=True, slots=True)
class CustomRoleGrant:
    """一次自定义角色分配，附带该角色已授予的权限字符串。"""

    role_id: str
    role_name: str
    permissions: tuple[str, ...] = ()
    is_active: bool = True
    expires_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DirectPermission:
    """直接分配给用户的单条权限。"""

    permission: str
    granted: bool = True
    is_active: bool = True
    expires_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RoleCount:
    role: str
    count: int


class PermissionStore(Protocol):
    async def find_active_custom_role_assignments(self, user_id: str, now: datetime) -> list[CustomRoleGrant]: ...

    async def find_active_user_permissions(self, user_id: str, now: datetime) -> list[DirectPermission]: ...

    async def count_users_by_role(self, filters: Mapping[str, Any] | None = None) -> list[RoleCount]: ...

    async def find_users_by_role(self, role: str, filters: Mapping[str, Any] | None = None) -> list[Any]: ...


def _active_filter(user_id: str, now: datetime) -> dict[str, Any]:
    return {
        "user_id": str(user_id),
        "is_active": True,
        "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
    }


_TENANT_FIELDS = {
    "organizationId": "organization_id",
    "propertyId": "property_id",
    "departmentId": "department_id",
    "userId": "_id",
}


def tenant_match(filters: Mapping[str, Any] | None) -> dict[str, Any]:
    """把权限 scope 过滤条件翻译为 users 集合上的查询条件。"""

    match: dict[str, Any] = {"deleted_at": None}
    for key, value in (filters or {}).items():
        target = _TENANT_FIELDS.get(key, key)
        if target == "_id":
            try:
                match["_id"] = PydanticObjectId(str(value))
            except (InvalidId, TypeError):
                match["_id"] = value
            continue
        match[target] = value
    return match


class BeaniePermissionStore:
    """基于 Beanie 文档模型的权限查询实现。"""

    async def find_active_custom_role_assignments(self, user_id: str, now: datetime) -> list[CustomRoleGrant]:
        assignments = await UserCustomRole.find(_active_filter(user_id, now)).to_list()
        if not assignments:
            return []

        role_ids = list({item.role_id for item in assignments})
        roles = await CustomRole.find(
            {"_id": {"$in": role_ids}, "is_active": True, "deleted_at": None}
        ).to_list()
        roles_by_id = {role.id: role for role in roles}

        permission_ids = {
            entry.permission_id
            for role in roles
            for entry in role.permissions
            if entry.granted
        }
        keys_by_id = await self._permission_keys(permission_ids)

        grants: list[CustomRoleGrant] = []
        for assignment in assignments:
            role = roles_by_id.get(assignment.role_id)
            if role is None:
                continue
            keys = tuple(
                keys_by_id[entry.permission_id]
                for entry in role.permissions
                if entry.granted and entry.permission_id in keys_by_id
            )
            grants.append(
                CustomRoleGrant(
                    role_id=str(role.id),
                    role_name=role.name,
                    permissions=keys,
                    is_active=assignment.is_active,
                    expires_at=as_utc(assignment.expires_at),
                )
            )
        return grants

    async def find_active_user_permissions(self, user_id: str, now: datetime) -> list[DirectPermission]:
        rows = await UserPermission.find(_active_filter(user_id, now)).to_list()
        if not rows:
            return []

        keys_by_id = await self._permission_keys({row.permission_id for row in rows})
        return [
            DirectPermission(
                permission=keys_by_id[row.permission_id],
                granted=row.granted,
                is_active=row.is_active,
                expires_at=as_utc(row.expires_at),
            )
            for row in rows
            if row.permission_id in keys_by_id
        ]

    async def count_users_by_role(self, filters: Mapping[str, Any] | None = None) -> list[RoleCount]:
        pipeline = [
            {"$group": {"_id": "$role", "count": {"$sum": 1}}},
            {"$sort": {"_id": 1}},
        ]
        rows = await User.find(tenant_match(filters)).aggregate(pipeline).to_list()
        return [RoleCount(role=str(row["_id"]), count=int(row["count"])) for row in rows]

    async def find_users_by_role(self, role: str, filters: Mapping[str, Any] | None = None) -> list[User]:
        match = tenant_match(filters)
        match["role"] = role
        return await User.find(match).sort("email").to_list()

    async def _permission_keys(self, permission_ids: set[PydanticObjectId]) -> dict[PydanticObjectId, str]:
        if not permission_ids:
            return {}
        permissions = await Permission.find({"_id": {"$in": list(permission_ids)}}).to_list()
        return {item.id: item.key for item in permissions}
