"""权限判定。

判定顺序固定：规范化要求 -> 解析有效权限 -> 匹配 -> 收窄规则 -> 生成 scope 过滤 -> 附加条件。
任何异常都转换为拒绝结果，不向调用方抛出。
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence

from opshub.services.permission_grammar import (
    PermissionLike,
    PermissionRequirement,
    matches_permission,
    normalize_permission,
)
from opshub.services.permission_resolver import PermissionResolver
from opshub.services.principal import CurrentUser, as_current_user
from opshub.services.role_registry import SystemRole, coerce_role, is_top_admin

logger = logging.getLogger(__name__)

ConditionPredicate = Callable[["PermissionContext"], "bool | Awaitable[bool]"]


@dataclass(frozen=True, slots=True)
class PermissionContext:
    """单次判定的上下文：当前用户加上从请求中提取的资源标识。"""

    user: CurrentUser
    organization_id: str | None = None
    property_id: str | None = None
    department_id: str | None = None
    resource_owner_id: str | None = None
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    query: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    granted: bool
    reason: str | None = None
    scope_filters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NarrowingRule:
    """命中授予后再额外收窄的具名策略。返回 False 表示该授予不成立。"""

    name: str
    applies: Callable[[CurrentUser, PermissionRequirement], bool]
    allows: Callable[[CurrentUser, PermissionRequirement], bool]


def _is_department_admin_at_property(user: CurrentUser, requirement: PermissionRequirement) -> bool:
    return coerce_role(user.role) is SystemRole.DEPARTMENT_ADMIN and requirement.scope == "property"


# 部门管理员在物业范围只读
DEPARTMENT_ADMIN_PROPERTY_READ_ONLY = NarrowingRule(
    name="department_admin_property_read_only",
    applies=_is_department_admin_at_property,
    allows=lambda _user, requirement: requirement.action == "read",
)

DEFAULT_NARROWING_RULES: tuple[NarrowingRule, ...] = (DEPARTMENT_ADMIN_PROPERTY_READ_ONLY,)

_CONTEXT_KEYS: dict[str, tuple[str, ...]] = {
    "organization_id": ("organizationId", "organization_id"),
    "property_id": ("propertyId", "property_id"),
    "department_id": ("departmentId", "department_id"),
    "resource_owner_id": ("userId", "user_id"),
}


def _pick(sources: Sequence[Mapping[str, Any] | None], keys: tuple[str, ...]) -> str | None:
    for source in sources:
        if not isinstance(source, Mapping):
            continue
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return str(value)
    return None


def build_permission_context(
    user: Any,
    params: Mapping[str, Any] | None = None,
    body: Mapping[str, Any] | None = None,
    query: Mapping[str, Any] | None = None,
) -> PermissionContext:
    """按 路径参数 -> 请求体 -> 查询参数 的顺序提取租户标识。"""

    current = as_current_user(user)
    if current is None:
        raise ValueError("an authenticated user is required to build a permission context")

    sources = (params, body, query)
    return PermissionContext(
        user=current,
        organization_id=_pick(sources, _CONTEXT_KEYS["organization_id"]),
        property_id=_pick(sources, _CONTEXT_KEYS["property_id"]),
        department_id=_pick(sources, _CONTEXT_KEYS["department_id"]),
        resource_owner_id=_pick(sources, _CONTEXT_KEYS["resource_owner_id"]),
        params=dict(params or {}),
        body=dict(body) if isinstance(body, Mapping) else {},
        query=dict(query or {}),
    )


def build_scope_filters(scope: str, user: CurrentUser) -> dict[str, Any]:
    """根据授予时的 scope 生成下游查询必须附加的租户过滤条件。"""

    filters: dict[str, Any] = {}
    if scope == "platform":
        return filters

    if scope == "own":
        filters["userId"] = user.id
    if scope in {"own", "department"} and user.department_id:
        filters["departmentId"] = user.department_id
    if scope in {"own", "department", "property"} and user.property_id:
        filters["propertyId"] = user.property_id
    if scope in {"own", "department", "property", "organization"} and user.organization_id:
        filters["organizationId"] = user.organization_id
    return filters


async def _call_predicate(predicate: Callable[..., Any], context: PermissionContext) -> bool:
    result = predicate(context)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


_CONDITION_ALIASES = {
    "sameDepartment": "same_department",
    "sameProperty": "same_property",
    "sameOrganization": "same_organization",
    "isOwner": "is_owner",
    "customCondition": "custom_condition",
}


async def evaluate_conditions(conditions: Mapping[str, Any], context: PermissionContext) -> EvaluationResult:
    """逐项校验附加条件，第一个失败即返回。上下文缺少目标标识时该条件不生效。"""

    user = context.user
    for raw_key, value in conditions.items():
        key = _CONDITION_ALIASES.get(raw_key, raw_key)
        if key == "same_department":
            if value and context.department_id and user.department_id != context.department_id:
                return EvaluationResult(False, "User is not in the same department as the resource")
        elif key == "same_property":
            if value and context.property_id and user.property_id != context.property_id:
                return EvaluationResult(False, "User is not in the same property as the resource")
        elif key == "same_organization":
            if value and context.organization_id and user.organization_id != context.organization_id:
                return EvaluationResult(False, "User is not in the same organization as the resource")
        elif key == "is_owner":
            if value and context.resource_owner_id and user.id != context.resource_owner_id:
                return EvaluationResult(False, "User is not the owner of the resource")
        elif key == "custom_condition":
            if callable(value) and not await _call_predicate(value, context):
                return EvaluationResult(False, "Custom condition failed")
        else:
            logger.warning("未知的权限条件: %s", raw_key)
    return EvaluationResult(True)


def _describe(permission: PermissionLike) -> str:
    if isinstance(permission, PermissionRequirement):
        return permission.key
    if isinstance(permission, Mapping):
        return ".".join(str(permission.get(name, "")) for name in ("resource", "action", "scope"))
    return str(permission)


class PermissionEvaluator:
    """基于解析器给出的有效权限做授权判定。"""

    def __init__(
        self,
        resolver: PermissionResolver,
        *,
        narrowing_rules: Iterable[NarrowingRule] = DEFAULT_NARROWING_RULES,
    ) -> None:
        self.resolver = resolver
        self.narrowing_rules = tuple(narrowing_rules)

    async def evaluate(self, permission: PermissionLike, context: PermissionContext) -> EvaluationResult:
        try:
            requirement = normalize_permission(permission)
            user = context.user
            logger.debug("判定权限 %s user=%s role=%s", requirement.key, user.id, user.role_name)

            resolved = await self.resolver.resolve(user)
            if resolved.failed and not is_top_admin(user.role):
                return EvaluationResult(
                    False,
                    f"Permission evaluation error: permissions for user {user.id} could not be loaded",
                )

            if not self._has_permission(requirement, resolved.permissions, user):
                custom = "assigned" if resolved.has_custom_permissions else "none"
                return EvaluationResult(
                    False,
                    f"User {user.id} (role: {user.role_name}, custom roles: {custom}) "
                    f"does not have permission {requirement.key}",
                )

            scope_filters = build_scope_filters(requirement.scope, user)

            if requirement.conditions:
                outcome = await evaluate_conditions(requirement.conditions, context)
                if not outcome.granted:
                    return outcome

            return EvaluationResult(True, scope_filters=scope_filters)
        except Exception as exc:
            logger.exception("权限判定异常 permission=%s", _describe(permission))
            return EvaluationResult(False, f"Permission evaluation error: {exc}")

    async def evaluate_any(
        self,
        permissions: Sequence[PermissionLike],
        context: PermissionContext,
    ) -> EvaluationResult:
        """任一权限通过即通过（OR 语义）。"""

        for permission in permissions:
            result = await self.evaluate(permission, context)
            if result.granted:
                return result

        attempted = ", ".join(_describe(item) for item in permissions)
        return EvaluationResult(False, f"None of the required permissions granted: {attempted}")

    async def can(self, user: Any, permission: PermissionLike, **identifiers: Any) -> bool:
        """供路由层之外的服务询问“该用户能否执行 X”。"""

        context = build_permission_context(user, params=identifiers)
        return (await self.evaluate(permission, context)).granted

    def _has_permission(
        self,
        requirement: PermissionRequirement,
        granted: Iterable[str],
        user: CurrentUser,
    ) -> bool:
        key = requirement.key
        for item in granted:
            if not matches_permission(key, item):
                continue
            logger.debug("权限命中 %s <- %s", key, item)
            if self._passes_narrowing(requirement, user):
                return True
        return False

    def _passes_narrowing(self, requirement: PermissionRequirement, user: CurrentUser) -> bool:
        for rule in self.narrowing_rules:
            if rule.applies(user, requirement) and not rule.allows(user, requirement):
                logger.debug("收窄规则 %s 拒绝 %s", rule.name, requirement.key)
                return False
        return True


def can_access_resource(user: Any, resource: Any, required_scope: str) -> bool:
    """记录级校验：按 scope 比较用户与资源的租户归属。"""

    current = as_current_user(user)
    if current is None or resource is None:
        return False

    def attr(name: str, camel: str) -> Any:
        if isinstance(resource, Mapping):
            return resource.get(name, resource.get(camel))
        return getattr(resource, name, getattr(resource, camel, None))

    def same(mine: str | None, theirs: Any) -> bool:
        return mine is not None and theirs is not None and str(theirs) == mine

    role = coerce_role(current.role)
    org_admins = {SystemRole.PLATFORM_ADMIN, SystemRole.ORGANIZATION_OWNER, SystemRole.ORGANIZATION_ADMIN}
    same_org = same(current.organization_id, attr("organization_id", "organizationId"))
    same_property = same(current.property_id, attr("property_id", "propertyId"))
    same_department = same(current.department_id, attr("department_id", "departmentId"))

    if required_scope == "platform":
        return role is SystemRole.PLATFORM_ADMIN
    if required_scope == "organization":
        return same_org or role is SystemRole.PLATFORM_ADMIN
    if required_scope == "property":
        return same_property or same_org or role in org_admins
    if required_scope == "department":
        return same_department or same_property or same_org or role in org_admins | {SystemRole.PROPERTY_MANAGER}
    if required_scope == "own":
        return (
            same(current.id, attr("user_id", "userId"))
            or same_department
            or same_property
            or same_org
            or role in org_admins | {SystemRole.PROPERTY_MANAGER, SystemRole.DEPARTMENT_ADMIN}
        )
    return False
