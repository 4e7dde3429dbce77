"""权限查询接口：当前用户自查，以及管理员查看租户内其他用户。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from opshub.middleware.permission import current_user, guard
from opshub.models import User
from opshub.services import authz_service, user_service
from opshub.services.permission_evaluator import build_permission_context
from opshub.services.permission_gate import require_permission
from opshub.services.permission_grammar import InvalidPermissionError, normalize_permission, stringify_permission
from opshub.services.principal import CurrentUser
from opshub.services.role_registry import role_info

router = APIRouter(prefix="/api")


class PermissionCheckPayload(BaseModel):
    permissions: list[str] = Field(..., min_length=1, max_length=50)
    context: dict[str, Any] = Field(default_factory=dict)


class UserPermissionCheckPayload(BaseModel):
    resource: str = Field(..., min_length=1, max_length=64)
    action: str = Field(..., min_length=1, max_length=32)
    scope: str = Field(..., min_length=1, max_length=32)
    context: dict[str, Any] = Field(default_factory=dict)


async def _accessible_user(actor: CurrentUser, user_id: str) -> User:
    target = await user_service.get_accessible_user(actor, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found or not accessible")
    return target


@router.get("/permissions/me")
async def my_permissions(user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    summary = await authz_service.get_resolver().summary(user)
    return {
        **summary.as_dict(),
        "role_info": role_info(user.role).as_dict(),
    }


@router.post("/permissions/check")
async def check_permissions(
    payload: PermissionCheckPayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    """逐条判定，返回每条权限的结果与原因。"""

    evaluator = authz_service.get_evaluator()
    context = build_permission_context(user, params=payload.context)
    results: dict[str, Any] = {}
    for permission in payload.permissions:
        outcome = await evaluator.evaluate(permission, context)
        results[permission] = {
            "granted": outcome.granted,
            "reason": outcome.reason,
            "scope_filters": outcome.scope_filters,
        }
    return {"user_id": user.id, "results": results}


@router.delete("/permissions/my/cache")
async def clear_my_cache(user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    await authz_service.get_resolver().clear_cache(user.id)
    return {"message": "Permission cache cleared successfully"}


@router.get(
    "/permissions/user/{user_id}/summary",
    dependencies=[guard(require_permission("user.read.department"))],
)
async def user_permission_summary(user_id: str, user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    target = await _accessible_user(user, user_id)
    summary = await authz_service.get_resolver().summary(target)
    return {
        **summary.as_dict(),
        "role_info": role_info(target.role).as_dict(),
    }


@router.post(
    "/permissions/user/{user_id}/check",
    dependencies=[guard(require_permission("user.read.department"))],
)
async def check_user_permission(
    user_id: str,
    payload: UserPermissionCheckPayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    """以目标用户身份判定一条权限。"""

    target = await _accessible_user(user, user_id)
    try:
        requirement = normalize_permission(payload.model_dump(include={"resource", "action", "scope"}))
    except InvalidPermissionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    context = build_permission_context(target, params=payload.context)
    outcome = await authz_service.get_evaluator().evaluate(requirement, context)
    return {
        "user_id": str(target.id),
        "permission": stringify_permission(requirement),
        "granted": outcome.granted,
        "reason": outcome.reason,
        "scope_filters": outcome.scope_filters,
    }


@router.delete(
    "/permissions/user/{user_id}/cache",
    dependencies=[guard(require_permission("user.read.department"))],
)
async def clear_user_cache(user_id: str, user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    target = await _accessible_user(user, user_id)
    await authz_service.get_resolver().clear_cache(str(target.id))
    return {"message": "Permission cache cleared successfully"}
