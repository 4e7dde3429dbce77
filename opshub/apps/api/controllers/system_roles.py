"""系统角色接口。"""

from __future__ import annotations

from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from opshub.errors import AssignmentError
from opshub.middleware.permission import apply_permission_filters, current_user, guard
from opshub.services import system_role_service
from opshub.services.permission_gate import require_permission
from opshub.services.principal import CurrentUser

router = APIRouter(prefix="/api")


class SystemRolePayload(BaseModel):
    role: str = Field(..., min_length=1, max_length=64)
    reason: str = Field(default="", max_length=240)


class BulkSystemRoleItem(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1, max_length=64)
    reason: str = Field(default="", max_length=240)


class BulkSystemRolePayload(BaseModel):
    assignments: list[BulkSystemRoleItem] = Field(..., min_length=1, max_length=100)
    reason: str = Field(default="", max_length=240)


def _raise(exc: AssignmentError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.get(
    "/system-roles",
    dependencies=[guard(require_permission("role.read.property"))],
)
async def list_roles(request: Request, user: CurrentUser = Depends(current_user)) -> list[dict[str, Any]]:
    filters = apply_permission_filters(system_role_service.tenant_filters_for(user), request)
    return await system_role_service.list_system_roles(user, filters)


@router.get(
    "/system-roles/assignable",
    dependencies=[guard(require_permission("role.read.department", "role.assign.department"))],
)
async def list_assignable_roles(user: CurrentUser = Depends(current_user)) -> list[dict[str, Any]]:
    return system_role_service.assignable_roles_for(user)


@router.get(
    "/system-roles/statistics",
    dependencies=[guard(require_permission("role.read.property"))],
)
async def role_statistics(request: Request, user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    filters = apply_permission_filters(system_role_service.tenant_filters_for(user), request)
    return await system_role_service.role_statistics(filters)


@router.post(
    "/system-roles/assign/bulk",
    dependencies=[guard(require_permission("role.assign.department"))],
)
async def bulk_assign_system_roles(
    payload: BulkSystemRolePayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    assignments = [item.model_dump() for item in payload.assignments]
    return await system_role_service.bulk_assign_system_roles(user, assignments, payload.reason)


@router.get(
    "/system-roles/{role}",
    dependencies=[guard(require_permission("role.read.property"))],
)
async def role_detail(role: str, request: Request, user: CurrentUser = Depends(current_user)) -> dict[str, Any]:
    filters = apply_permission_filters(system_role_service.tenant_filters_for(user), request)
    try:
        return await system_role_service.get_system_role_info(user, role, filters)
    except AssignmentError as exc:
        _raise(exc)


@router.get(
    "/system-roles/{role}/users",
    dependencies=[guard(require_permission("user.read.property"))],
)
async def role_users(role: str, request: Request, user: CurrentUser = Depends(current_user)) -> list[dict[str, Any]]:
    """同角色用户列表，按操作者租户与权限 scope 过滤。"""

    filters = apply_permission_filters(system_role_service.tenant_filters_for(user), request)
    try:
        users = await system_role_service.users_by_role(role, filters)
    except AssignmentError as exc:
        _raise(exc)
    return [system_role_service.user_view(item) for item in users]


@router.get(
    "/system-roles/{role}/permissions",
    dependencies=[guard(require_permission("role.read.department"))],
)
async def role_permissions(role: str) -> dict[str, Any]:
    try:
        return system_role_service.preview_role_permissions(role)
    except AssignmentError as exc:
        _raise(exc)


@router.put(
    "/users/{user_id}/system-role",
    dependencies=[guard(require_permission("role.assign.department"))],
)
async def assign_system_role(
    user_id: str,
    payload: SystemRolePayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    try:
        target = await system_role_service.assign_system_role(user, user_id, payload.role, payload.reason)
    except AssignmentError as exc:
        _raise(exc)
    return {"user_id": str(target.id), "role": getattr(target.role, "value", target.role)}
