"""请求级授权关卡。

每个受保护的操作以 ``RouteRequirements`` 数据声明自己的要求，关卡据此判定：

- 没有任何声明：放行（认证由前置环节负责）；
- 有声明但无当前用户：401；
- 权限列表按 OR 语义判定；条件权限先判基础权限，再执行自定义谓词；
- 旧版 roles 白名单独立判定，未命中时可经迁移桥转换为权限字符串重试；
- 通过后返回 scope 过滤条件，由下游查询自行合并。
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from opshub.services.legacy_role_bridge import LegacyRoleBridge, OperationRef
from opshub.services.permission_evaluator import (
    ConditionPredicate,
    PermissionContext,
    PermissionEvaluator,
    build_permission_context,
)
from opshub.services.permission_grammar import PermissionLike, scope_level
from opshub.services.principal import CurrentUser, as_current_user
from opshub.services.role_registry import coerce_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConditionalRequirement:
    """基础权限加自定义谓词。"""

    permission: PermissionLike
    condition: ConditionPredicate
    description: str = ""


@dataclass(frozen=True, slots=True)
class RouteRequirements:
    """挂在单个操作上的授权声明。"""

    permissions: tuple[PermissionLike, ...] = ()
    conditional: ConditionalRequirement | None = None
    roles: tuple[str, ...] = ()
    scope: str | None = None
    operation: OperationRef | None = None

    @property
    def has_permission_requirements(self) -> bool:
        return bool(self.permissions) or self.conditional is not None

    @property
    def is_empty(self) -> bool:
        return not self.has_permission_requirements and not self.roles

    def with_operation(self, container: str, name: str) -> "RouteRequirements":
        return RouteRequirements(
            permissions=self.permissions,
            conditional=self.conditional,
            roles=self.roles,
            scope=self.scope,
            operation=OperationRef(container=container, name=name),
        )


def require_permission(*permissions: PermissionLike, scope: str | None = None) -> RouteRequirements:
    return RouteRequirements(permissions=tuple(permissions), scope=scope)


def conditional_permission(
    permission: PermissionLike,
    condition: ConditionPredicate,
    description: str = "",
) -> RouteRequirements:
    return RouteRequirements(conditional=ConditionalRequirement(permission, condition, description))


def require_roles(*roles: Any, operation: OperationRef | None = None) -> RouteRequirements:
    names = tuple(getattr(role, "value", str(role)) for role in roles)
    return RouteRequirements(roles=names, operation=operation)


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: str | None = None
    status_code: int = 200
    scope_filters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, scope_filters: Mapping[str, Any] | None = None) -> "GateDecision":
        return cls(True, scope_filters=dict(scope_filters or {}))

    @classmethod
    def deny(cls, reason: str, status_code: int = 403) -> "GateDecision":
        return cls(False, reason=reason, status_code=status_code)


def automatic_scope_filters(user: CurrentUser, scope: str) -> dict[str, Any]:
    """路由级自动过滤：只按用户自身所在层级过滤。"""

    if scope == "organization" and user.organization_id:
        return {"organizationId": user.organization_id}
    if scope == "property" and user.property_id:
        return {"propertyId": user.property_id}
    if scope == "department" and user.department_id:
        return {"departmentId": user.department_id}
    if scope == "own":
        return {"userId": user.id}
    if scope_level(scope) < 0:
        logger.warning("未知的自动过滤 scope: %s", scope)
    return {}


class PermissionGate:
    """对单个请求执行授权判定，本身无状态。"""

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        *,
        legacy_roles_active: bool = True,
        legacy_bridge: LegacyRoleBridge | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.legacy_roles_active = legacy_roles_active
        self.legacy_bridge = legacy_bridge

    async def check(
        self,
        requirements: RouteRequirements | None,
        user: Any,
        *,
        params: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
    ) -> GateDecision:
        if requirements is None or requirements.is_empty:
            logger.debug("未声明权限要求，直接放行")
            return GateDecision.allow()

        current = as_current_user(user)
        if current is None:
            logger.warning("受保护操作缺少当前用户")
            return GateDecision.deny("Authentication required", status_code=401)

        try:
            context = build_permission_context(current, params, body, query)
            return await self._check(requirements, context)
        except Exception:
            logger.exception("权限关卡执行异常 user=%s", current.id)
            return GateDecision.deny("Permission check failed")

    async def _check(self, requirements: RouteRequirements, context: PermissionContext) -> GateDecision:
        user = context.user
        filters: dict[str, Any] = {}
        logger.debug(
            "检查权限 user=%s role=%s permissions=%s conditional=%s roles=%s",
            user.id,
            user.role_name,
            requirements.permissions,
            requirements.conditional.permission if requirements.conditional else None,
            requirements.roles,
        )

        # 新式声明存在时旧版白名单完全跳过
        if requirements.roles and not requirements.has_permission_requirements:
            decision = await self._check_legacy_roles(requirements, context)
            if not decision.allowed:
                return decision
            filters.update(decision.scope_filters)

        if requirements.permissions:
            result = await self.evaluator.evaluate_any(list(requirements.permissions), context)
            if not result.granted:
                logger.warning("权限拒绝 user=%s: %s", user.id, result.reason)
                return GateDecision.deny(f"Access denied: {result.reason or 'Insufficient permissions'}")
            filters.update(result.scope_filters)

        if requirements.conditional is not None:
            decision = await self._check_conditional(requirements.conditional, context)
            if not decision.allowed:
                return decision
            filters.update(decision.scope_filters)

        if requirements.scope:
            filters.update(automatic_scope_filters(user, requirements.scope))

        return GateDecision.allow(filters)

    async def _check_conditional(
        self,
        conditional: ConditionalRequirement,
        context: PermissionContext,
    ) -> GateDecision:
        user = context.user
        base = await self.evaluator.evaluate(conditional.permission, context)
        if not base.granted:
            logger.warning("基础权限拒绝 user=%s: %s", user.id, base.reason)
            return GateDecision.deny(f"Access denied: {base.reason or 'Insufficient permissions'}")

        try:
            outcome = conditional.condition(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception:
            logger.exception("条件权限谓词执行异常 user=%s", user.id)
            return GateDecision.deny("Permission evaluation error")

        if not outcome:
            message = conditional.description or "Custom condition not met"
            logger.warning("条件权限未满足 user=%s: %s", user.id, message)
            return GateDecision.deny(f"Access denied: {message}")
        return GateDecision.allow(base.scope_filters)

    async def _check_legacy_roles(
        self,
        requirements: RouteRequirements,
        context: PermissionContext,
    ) -> GateDecision:
        user = context.user
        allowed_roles = {coerce_role(role) or role for role in requirements.roles}
        user_role = coerce_role(user.role) or user.role

        if self.legacy_roles_active and user_role in allowed_roles:
            return GateDecision.allow()

        if self.legacy_bridge is not None:
            translated = self.legacy_bridge.translate(requirements.roles, requirements.operation)
            if translated:
                logger.debug("旧版角色声明转换为权限 %s", translated)
                result = await self.evaluator.evaluate_any(translated, context)
                if result.granted:
                    return GateDecision.allow(result.scope_filters)
                return GateDecision.deny(f"Access denied: {result.reason}")

        required = ", ".join(requirements.roles)
        if not self.legacy_roles_active:
            return GateDecision.deny(f"Access denied: legacy role declarations are disabled (roles: {required})")
        return GateDecision.deny(f"Access denied: role {user.role_name} is not one of: {required}")

