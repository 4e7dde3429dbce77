"""用户模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document
from pydantic import Field
from pymongo import IndexModel

from opshub.services.role_registry import SystemRole


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Document):
    """后台用户，携带系统角色与租户归属。"""

    email: str = Field(..., min_length=3, max_length=254)
    display_name: str = Field(default="", max_length=64)
    role: SystemRole = SystemRole.STAFF
    user_type: Literal["INTERNAL", "CLIENT", "VENDOR"] = "INTERNAL"
    organization_id: str | None = None
    property_id: str | None = None
    department_id: str | None = None
    deleted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("email", 1)], name="uniq_users_email", unique=True),
            IndexModel([("role", 1)], name="idx_users_role"),
            IndexModel([("organization_id", 1), ("property_id", 1)], name="idx_users_tenant"),
        ]
