"""FastAPI 路由授权依赖。

用法::

    @router.get(
        "/documents",
        dependencies=[guard(require_permission("documents.read.department"))],
    )
    async def list_documents(request: Request):
        where = apply_permission_filters({"archived": False}, request)
"""

import json
from typing import Any, Mapping

from fastapi import Depends, Request

from opshub.errors import AuthenticationMissing, PermissionDenied
from opshub.services import authz_service
from opshub.services.permission_gate import GateDecision, RouteRequirements
from opshub.services.principal import CurrentUser, as_current_user


async def _read_json_body(request: Request) -> Mapping[str, Any]:
    if request.method in {"GET", "HEAD", "DELETE", "OPTIONS"}:
        return {}
    if "application/json" not in request.headers.get("content-type", ""):
        return {}
    raw = await request.body()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def raise_for_decision(decision: GateDecision) -> None:
    if decision.allowed:
        return
    if decision.status_code == 401:
        raise AuthenticationMissing(decision.reason or "Authentication required")
    raise PermissionDenied(decision.reason or "Insufficient permissions", status_code=decision.status_code)


class PermissionGuard:
    """把路由上的 RouteRequirements 交给 PermissionGate 判定。"""

    def __init__(self, requirements: RouteRequirements) -> None:
        self.requirements = requirements

    async def __call__(self, request: Request) -> dict[str, Any]:
        requirements = self.requirements
        endpoint = request.scope.get("endpoint")
        if requirements.roles and requirements.operation is None and endpoint is not None:
            requirements = requirements.with_operation(endpoint.__module__, endpoint.__name__)

        decision = await authz_service.get_gate().check(
            requirements,
            getattr(request.state, "current_user", None),
            params=dict(request.path_params),
            body=await _read_json_body(request),
            query=dict(request.query_params),
        )
        raise_for_decision(decision)

        merged = {**get_permission_filters(request), **decision.scope_filters}
        request.state.permission_filters = merged
        return merged


def guard(requirements: RouteRequirements) -> Any:
    """生成可放入 ``dependencies=[...]`` 的依赖。"""

    return Depends(PermissionGuard(requirements))


def current_user(request: Request) -> CurrentUser:
    """需要登录的路由依赖。"""

    user = as_current_user(getattr(request.state, "current_user", None))
    if user is None:
        raise AuthenticationMissing()
    return user


def get_permission_filters(request: Request) -> dict[str, Any]:
    return dict(getattr(request.state, "permission_filters", None) or {})


def apply_permission_filters(where: Mapping[str, Any], request: Request) -> dict[str, Any]:
    """把关卡给出的 scope 过滤合并到下游查询条件上（过滤条件优先）。"""

    return {**where, **get_permission_filters(request)}
