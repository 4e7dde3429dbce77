"""权限目录与自定义角色模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import IndexModel

PermissionScope = Literal["own", "department", "property", "organization", "platform"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Permission(Document):
    """权限目录条目，唯一键为 resource.action.scope。"""

    resource: str = Field(..., min_length=1, max_length=64)
    action: str = Field(..., min_length=1, max_length=32)
    scope: PermissionScope
    name: str = Field(default="", max_length=120)
    description: str = Field(default="", max_length=240)
    category: str = Field(default="", max_length=64)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}.{self.scope}"

    class Settings:
        name = "permissions"
        indexes = [
            IndexModel([("resource", 1), ("action", 1), ("scope", 1)], name="uniq_permissions_key", unique=True),
        ]


class CustomRole(Document):
    """租户内由管理员定义的权限集合。"""

    class RolePermission(BaseModel):
        """角色内的单条权限；只有 granted=True 的条目生效。"""

        permission_id: PydanticObjectId
        granted: bool = True

    name: str = Field(..., min_length=2, max_length=64)
    description: str = Field(default="", max_length=240)
    organization_id: str | None = None
    property_id: str | None = None
    is_system_role: bool = False
    is_active: bool = True
    priority: int = Field(default=0, ge=0)
    permissions: list[RolePermission] = Field(default_factory=list)
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "custom_roles"
        indexes = [
            IndexModel([("organization_id", 1), ("property_id", 1)], name="idx_custom_roles_tenant"),
        ]
