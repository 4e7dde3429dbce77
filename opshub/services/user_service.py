"""用户查询服务层。"""

from __future__ import annotations

from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId

from opshub.models import User
from opshub.services.principal import CurrentUser
from opshub.services.role_registry import is_top_admin


def _object_id(value: str | None) -> PydanticObjectId | None:
    if not value:
        return None
    try:
        return PydanticObjectId(str(value))
    except (InvalidId, TypeError):
        return None


async def get_user_by_id(user_id: str | None) -> User | None:
    object_id = _object_id(user_id)
    if object_id is None:
        return None
    return await User.get(object_id)


def in_actor_tenant(actor: CurrentUser, organization_id: Any, property_id: Any = None) -> bool:
    """平台管理员不受限；其余角色要求同组织，自身归属物业时还要求同物业。"""

    if is_top_admin(actor.role):
        return True
    if _as_str(organization_id) != actor.organization_id:
        return False
    return not actor.property_id or _as_str(property_id) == actor.property_id


async def get_accessible_user(actor: CurrentUser, user_id: str | None) -> User | None:
    """按操作者的租户范围查找用户，范围外与已删除的用户一律视为不存在。"""

    user = await get_user_by_id(user_id)
    if user is None or user.deleted_at is not None:
        return None
    if not in_actor_tenant(actor, user.organization_id, getattr(user, "property_id", None)):
        return None
    return user


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
