"""用户与自定义角色、直接权限的关联模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserCustomRole(Document):
    """自定义角色分配，(user_id, role_id) 唯一，重复分配时重新激活。"""

    user_id: str
    role_id: PydanticObjectId
    is_active: bool = True
    expires_at: datetime | None = None
    assigned_by: str = ""
    assigned_at: datetime = Field(default_factory=utc_now)
    conditions: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    class Settings:
        name = "user_custom_roles"
        indexes = [
            IndexModel([("user_id", 1), ("role_id", 1)], name="uniq_user_custom_roles", unique=True),
        ]


class UserPermission(Document):
    """直接授予（granted=True）或显式拒绝（granted=False）的单条权限。"""

    user_id: str
    permission_id: PydanticObjectId
    granted: bool = True
    is_active: bool = True
    expires_at: datetime | None = None
    granted_by: str = ""
    conditions: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "user_permissions"
        indexes = [
            IndexModel([("user_id", 1), ("permission_id", 1)], name="uniq_user_permissions", unique=True),
        ]
