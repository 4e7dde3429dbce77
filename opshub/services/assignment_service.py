"""自定义角色分配与直接权限服务层。

所有变更都以操作者（actor）的租户范围为界：目标用户与自定义角色必须落在
操作者的组织（及其物业）内，范围外一律按不存在处理；除平台管理员外，
不能给自己分配角色或授予权限。变更在返回前会清除目标用户的权限缓存。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId
from bson.errors import InvalidId

from opshub.errors import AssignmentError
from opshub.models import CustomRole, Permission, User, UserCustomRole, UserPermission
from opshub.models.assignment import utc_now
from opshub.services import authz_service, permission_catalog_service, user_service
from opshub.services.permission_grammar import InvalidPermissionError, normalize_permission
from opshub.services.principal import CurrentUser
from opshub.services.role_registry import is_top_admin

logger = logging.getLogger(__name__)


def _object_id(value: Any, label: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(str(value))
    except (InvalidId, TypeError):
        raise AssignmentError(f"{label} with ID {value} not found", status_code=404) from None


async def _clear(user_id: str) -> None:
    await authz_service.get_resolver().clear_cache(str(user_id))


def _reject_self(actor: CurrentUser, user_id: str) -> None:
    if str(user_id) == actor.id and not is_top_admin(actor.role):
        raise AssignmentError("You cannot change your own roles or permissions", status_code=403)


async def get_target_user(actor: CurrentUser, user_id: str) -> User:
    user = await user_service.get_accessible_user(actor, user_id)
    if user is None:
        raise AssignmentError("User not found or not accessible", status_code=404)
    return user


async def get_active_custom_role(actor: CurrentUser, role_id: Any) -> CustomRole:
    """其他租户的角色与停用、已删除的角色同样返回 404。"""

    role = await CustomRole.get(_object_id(role_id, "Role"))
    if role is None or role.deleted_at is not None or not role.is_active:
        raise AssignmentError("Role not found or not accessible", status_code=404)
    if not user_service.in_actor_tenant(actor, role.organization_id, role.property_id):
        raise AssignmentError("Role not found or not accessible", status_code=404)
    return role


async def _ensure_actor_holds(actor: CurrentUser, keys: list[str], what: str) -> None:
    """操作者只能下发自己持有的权限。"""

    if is_top_admin(actor.role):
        return
    evaluator = authz_service.get_evaluator()
    missing = [key for key in keys if not await evaluator.can(actor, key)]
    if missing:
        raise AssignmentError(
            f"You cannot grant {what}: missing permissions {', '.join(missing)}",
            status_code=403,
        )


async def find_permission(permission: Any) -> Permission:
    """按 ID 或 ``resource.action.scope`` 查找权限目录条目。"""

    if isinstance(permission, str) and "." in permission:
        try:
            requirement = normalize_permission(permission)
        except InvalidPermissionError as exc:
            raise AssignmentError(str(exc), status_code=400) from exc
        item = await Permission.find_one(
            {"resource": requirement.resource, "action": requirement.action, "scope": requirement.scope}
        )
    else:
        item = await Permission.get(_object_id(permission, "Permission"))
    if item is None:
        raise AssignmentError(f"Permission {permission} not found", status_code=404)
    return item


async def assign_custom_role(
    actor: CurrentUser,
    user_id: str,
    role_id: Any,
    *,
    expires_at: datetime | None = None,
    conditions: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> UserCustomRole:
    """同一用户同一角色只保留一条记录，重复分配时重新激活。"""

    _reject_self(actor, user_id)
    user = await get_target_user(actor, user_id)
    role = await get_active_custom_role(actor, role_id)
    granted_ids = [entry.permission_id for entry in role.permissions if entry.granted]
    await _ensure_actor_holds(actor, await permission_catalog_service.permission_keys(granted_ids), f"role {role.name}")
    target_id = str(user.id)

    assignment = await UserCustomRole.find_one({"user_id": target_id, "role_id": role.id})
    if assignment is not None:
        assignment.is_active = True
        assignment.assigned_by = actor.id
        assignment.assigned_at = utc_now()
        assignment.expires_at = expires_at
        assignment.conditions = conditions or {}
        assignment.metadata = metadata or {}
        await assignment.save()
    else:
        assignment = UserCustomRole(
            user_id=target_id,
            role_id=role.id,
            assigned_by=actor.id,
            expires_at=expires_at,
            conditions=conditions or {},
            metadata=metadata or {},
        )
        await assignment.insert()

    await _clear(target_id)
    logger.info("自定义角色 %s 分配给用户 %s by=%s", role.id, target_id, actor.id)
    return assignment


async def unassign_custom_role(actor: CurrentUser, user_id: str, role_id: Any, *, reason: str = "") -> UserCustomRole:
    user = await get_target_user(actor, user_id)
    target_id = str(user.id)
    assignment = await UserCustomRole.find_one({"user_id": target_id, "role_id": _object_id(role_id, "Role")})
    if assignment is None:
        raise AssignmentError("Role assignment not found", status_code=404)

    assignment.is_active = False
    assignment.metadata = {
        **(assignment.metadata or {}),
        "revoked_by": actor.id,
        "revoked_at": utc_now().isoformat(),
        "revocation_reason": reason,
    }
    await assignment.save()

    await _clear(target_id)
    logger.info("自定义角色 %s 已从用户 %s 撤销 by=%s", role_id, target_id, actor.id)
    return assignment


async def set_user_permission(
    actor: CurrentUser,
    user_id: str,
    permission: Any,
    *,
    granted: bool,
    expires_at: datetime | None = None,
    conditions: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> UserPermission:
    """直接授予（granted=True）或显式拒绝（granted=False）一条权限。

    授予时操作者自己必须持有该权限，不能借直接授权越级。
    """

    _reject_self(actor, user_id)
    user = await get_target_user(actor, user_id)
    item = await find_permission(permission)
    if granted:
        await _ensure_actor_holds(actor, [item.key], f"permission {item.key}")
    target_id = str(user.id)

    row = await UserPermission.find_one({"user_id": target_id, "permission_id": item.id})
    if row is not None:
        row.granted = granted
        row.is_active = True
        row.granted_by = actor.id
        row.expires_at = expires_at
        row.conditions = conditions or {}
        row.metadata = metadata or {}
        row.updated_at = utc_now()
        await row.save()
    else:
        row = UserPermission(
            user_id=target_id,
            permission_id=item.id,
            granted=granted,
            granted_by=actor.id,
            expires_at=expires_at,
            conditions=conditions or {},
            metadata=metadata or {},
        )
        await row.insert()

    await _clear(target_id)
    logger.info(
        "直接权限 %s %s 用户 %s by=%s",
        item.key,
        "授予" if granted else "拒绝",
        target_id,
        actor.id,
    )
    return row


async def revoke_user_permission(actor: CurrentUser, user_id: str, permission: Any, *, reason: str = "") -> UserPermission:
    """撤销直接权限：保留记录用于审计，仅置为失效。"""

    user = await get_target_user(actor, user_id)
    target_id = str(user.id)
    item = await find_permission(permission)
    row = await UserPermission.find_one({"user_id": target_id, "permission_id": item.id})
    if row is None:
        raise AssignmentError("User permission not found", status_code=404)

    row.granted = False
    row.is_active = False
    row.metadata = {
        **(row.metadata or {}),
        "revoked_by": actor.id,
        "revoked_at": utc_now().isoformat(),
        "revocation_reason": reason,
    }
    row.updated_at = utc_now()
    await row.save()

    await _clear(target_id)
    logger.info("直接权限 %s 已从用户 %s 撤销 by=%s", item.key, target_id, actor.id)
    return row
