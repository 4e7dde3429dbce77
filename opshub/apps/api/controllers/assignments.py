"""自定义角色分配与直接权限接口。"""

from __future__ import annotations

from datetime import datetime
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from opshub.errors import AssignmentError
from opshub.middleware.permission import current_user, guard
from opshub.services import assignment_service
from opshub.services.permission_gate import require_permission
from opshub.services.principal import CurrentUser

router = APIRouter(prefix="/api")


class CustomRolePayload(BaseModel):
    role_id: str = Field(..., min_length=1)
    expires_at: datetime | None = None
    conditions: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class UserPermissionPayload(BaseModel):
    permission: str = Field(..., min_length=1, description="权限 ID 或 resource.action.scope")
    granted: bool = True
    expires_at: datetime | None = None
    conditions: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _raise(exc: AssignmentError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.post(
    "/users/{user_id}/custom-roles",
    status_code=201,
    dependencies=[guard(require_permission("role.assign.department"))],
)
async def assign_custom_role(
    user_id: str,
    payload: CustomRolePayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    try:
        assignment = await assignment_service.assign_custom_role(
            user,
            user_id,
            payload.role_id,
            expires_at=payload.expires_at,
            conditions=payload.conditions,
            metadata=payload.metadata,
        )
    except AssignmentError as exc:
        _raise(exc)
    return {"id": str(assignment.id), "user_id": user_id, "role_id": str(assignment.role_id)}


@router.delete(
    "/users/{user_id}/custom-roles/{role_id}",
    dependencies=[guard(require_permission("role.assign.department"))],
)
async def unassign_custom_role(
    user_id: str,
    role_id: str,
    reason: str = "",
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    try:
        await assignment_service.unassign_custom_role(user, user_id, role_id, reason=reason)
    except AssignmentError as exc:
        _raise(exc)
    return {"ok": True}


@router.post(
    "/users/{user_id}/permissions",
    status_code=201,
    dependencies=[guard(require_permission("permission.grant.organization"))],
)
async def set_user_permission(
    user_id: str,
    payload: UserPermissionPayload,
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    try:
        row = await assignment_service.set_user_permission(
            user,
            user_id,
            payload.permission,
            granted=payload.granted,
            expires_at=payload.expires_at,
            conditions=payload.conditions,
            metadata=payload.metadata,
        )
    except AssignmentError as exc:
        _raise(exc)
    return {"id": str(row.id), "user_id": user_id, "granted": row.granted}


@router.delete(
    "/users/{user_id}/permissions/{permission_id}",
    dependencies=[guard(require_permission("permission.grant.organization"))],
)
async def revoke_user_permission(
    user_id: str,
    permission_id: str,
    reason: str = "",
    user: CurrentUser = Depends(current_user),
) -> dict[str, Any]:
    try:
        await assignment_service.revoke_user_permission(user, user_id, permission_id, reason=reason)
    except AssignmentError as exc:
        _raise(exc)
    return {"ok": True}
