"""系统角色管理服务层。"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from opshub.errors import AssignmentError
from opshub.models import User
from opshub.models.user import utc_now
from opshub.services import authz_service, user_service
from opshub.services.principal import CurrentUser
from opshub.services.role_registry import (
    SystemRole,
    all_system_roles,
    assignable_roles,
    can_assign_role,
    coerce_role,
    is_top_admin,
    legacy_permissions_for,
    role_info,
)

logger = logging.getLogger(__name__)


def tenant_filters_for(actor: CurrentUser) -> dict[str, Any]:
    """非平台管理员只能看到本组织的数据。"""

    if is_top_admin(actor.role) or not actor.organization_id:
        return {}
    return {"organizationId": actor.organization_id}


async def list_system_roles(actor: CurrentUser, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
    store = authz_service.get_resolver().store
    counts = {item.role: item.count for item in await store.count_users_by_role(filters)}
    allowed = set(assignable_roles(actor.role))
    return [
        {
            "role": role.value,
            **info.as_dict(),
            "user_count": counts.get(role.value, 0),
            "assignable": role in allowed,
        }
        for role, info in all_system_roles()
    ]


def user_view(user: Any) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "email": getattr(user, "email", ""),
        "display_name": getattr(user, "display_name", ""),
        "role": getattr(user.role, "value", user.role),
        "organization_id": getattr(user, "organization_id", None),
        "property_id": getattr(user, "property_id", None),
        "department_id": getattr(user, "department_id", None),
    }


async def get_system_role_info(
    actor: CurrentUser,
    role: Any,
    filters: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    resolved = coerce_role(role)
    if resolved is None:
        raise AssignmentError(f"Unknown system role: {role}", status_code=404)
    store = authz_service.get_resolver().store
    counts = {item.role: item.count for item in await store.count_users_by_role(filters)}
    return {
        "role": resolved.value,
        **role_info(resolved).as_dict(),
        "user_count": counts.get(resolved.value, 0),
        "assignable": resolved in assignable_roles(actor.role),
    }


def assignable_roles_for(actor: CurrentUser) -> list[dict[str, Any]]:
    return [{"role": role.value, **role_info(role).as_dict()} for role in assignable_roles(actor.role)]


def preview_role_permissions(role: Any) -> dict[str, Any]:
    resolved = coerce_role(role)
    if resolved is None:
        raise AssignmentError(f"Unknown system role: {role}", status_code=404)
    return {
        "role": resolved.value,
        "info": role_info(resolved).as_dict(),
        "permissions": legacy_permissions_for(resolved),
    }


async def role_statistics(filters: Mapping[str, Any] | None = None) -> dict[str, Any]:
    store = authz_service.get_resolver().store
    rows = await store.count_users_by_role(filters)
    total = sum(item.count for item in rows)
    return {
        "total_users": total,
        "role_distribution": [
            {
                "role": item.role,
                "count": item.count,
                "percentage": round(item.count * 100 / total) if total else 0,
            }
            for item in rows
        ],
    }


async def users_by_role(role: Any, filters: Mapping[str, Any] | None = None) -> list[Any]:
    resolved = coerce_role(role)
    if resolved is None:
        raise AssignmentError(f"Unknown system role: {role}", status_code=404)
    store = authz_service.get_resolver().store
    return await store.find_users_by_role(resolved.value, filters)


def is_role_compatible(user: Any, role: SystemRole) -> bool:
    """外部角色（CLIENT/VENDOR）只能分配给对应类型的用户，内部角色只给内部用户。"""

    expected = role_info(role).user_type
    return str(getattr(user, "user_type", "INTERNAL")) == expected


async def assign_system_role(actor: CurrentUser, target_user_id: str, role: Any, reason: str = "") -> User:
    target_role = coerce_role(role)
    if target_role is None:
        raise AssignmentError(f"Unknown system role: {role}", status_code=400)

    if not can_assign_role(actor.role, target_role):
        raise AssignmentError(
            f"You cannot assign role {target_role.value}. "
            f"Your role {actor.role_name} does not have sufficient privileges.",
            status_code=403,
        )

    user = await user_service.get_user_by_id(target_user_id)
    if user is None or user.deleted_at is not None:
        raise AssignmentError(f"User with ID {target_user_id} not found", status_code=404)

    if str(user.id) != actor.id:
        if not can_assign_role(actor.role, user.role):
            raise AssignmentError(
                f"You cannot change the role of a user with role {getattr(user.role, 'value', user.role)}",
                status_code=403,
            )
        if not user_service.in_actor_tenant(actor, user.organization_id, getattr(user, "property_id", None)):
            raise AssignmentError("User belongs to another organization or property", status_code=403)

    if not is_role_compatible(user, target_role):
        raise AssignmentError(
            f"Role {target_role.value} is not compatible with user's current configuration",
            status_code=400,
        )

    previous = user.role
    user.role = target_role
    user.updated_at = utc_now()
    await user.save()
    await authz_service.get_resolver().clear_cache(str(user.id))

    logger.info(
        "系统角色变更 user=%s %s -> %s by=%s reason=%s",
        user.id,
        getattr(previous, "value", previous),
        target_role.value,
        actor.id,
        reason,
    )
    return user


async def bulk_assign_system_roles(
    actor: CurrentUser,
    assignments: list[Mapping[str, Any]],
    reason: str = "",
) -> dict[str, Any]:
    """逐条分配，单条失败不影响其余条目。"""

    successful: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    for item in assignments:
        user_id = str(item.get("user_id") or "")
        try:
            user = await assign_system_role(actor, user_id, item.get("role"), item.get("reason") or reason)
        except AssignmentError as exc:
            logger.warning("批量分配失败 user=%s: %s", user_id, exc.message)
            failed.append({"user_id": user_id, "error": exc.message, "status_code": exc.status_code})
            continue
        successful.append(user_view(user))

    logger.info("批量分配系统角色 by=%s 成功=%s 失败=%s", actor.id, len(successful), len(failed))
    return {"successful": successful, "failed": failed}
