"""权限字符串语法与匹配。

权限格式为 ``resource.action.scope``，三段均必填且统一小写：

- ``documents.read.department``：读取本部门文档
- ``*.*.property``：物业范围内的全部资源与动作（仅允许出现在授予侧）

scope 按覆盖面从小到大排序：``own < department < property < organization < platform``，
授予侧可用 ``all`` 作为 ``platform`` 的同义词。授予的 scope 不低于要求的 scope 即满足。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union

WILDCARD = "*"
SCOPE_HIERARCHY: tuple[str, ...] = ("own", "department", "property", "organization", "platform")
SCOPE_ALIASES: dict[str, str] = {"all": "platform"}


class InvalidPermissionError(ValueError):
    """权限声明格式非法。"""


@dataclass(frozen=True, slots=True)
class PermissionRequirement:
    """规范化后的权限要求。"""

    resource: str
    action: str
    scope: str
    conditions: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}.{self.scope}"

    def __str__(self) -> str:
        return self.key


PermissionLike = Union[str, PermissionRequirement, Mapping[str, Any]]


def canonical_scope(scope: str) -> str:
    value = str(scope or "").strip().lower()
    return SCOPE_ALIASES.get(value, value)


def scope_level(scope: str) -> int:
    """返回 scope 在层级中的位置，未知 scope 返回 -1。"""

    try:
        return SCOPE_HIERARCHY.index(canonical_scope(scope))
    except ValueError:
        return -1


def split_permission(permission: str) -> list[str]:
    return [part.strip().lower() for part in str(permission).split(".")]


def is_well_formed(permission: str) -> bool:
    """恰好三段且每段非空。"""

    parts = split_permission(permission)
    return len(parts) == 3 and all(parts)


def parse_permission(permission: str) -> PermissionRequirement:
    """解析紧凑格式的权限字符串。"""

    if not is_well_formed(permission):
        raise InvalidPermissionError(
            f"Invalid permission format: {permission!r}. Expected format: resource.action.scope"
        )
    resource, action, scope = split_permission(permission)
    return _build_requirement(resource, action, scope, {})


def stringify_permission(permission: PermissionRequirement) -> str:
    return permission.key


def normalize_permission(permission: PermissionLike) -> PermissionRequirement:
    """将字符串、映射或 PermissionRequirement 统一为 PermissionRequirement。"""

    if isinstance(permission, PermissionRequirement):
        return _build_requirement(permission.resource, permission.action, permission.scope, permission.conditions)
    if isinstance(permission, str):
        return parse_permission(permission)
    if isinstance(permission, Mapping):
        missing = [name for name in ("resource", "action", "scope") if not str(permission.get(name) or "").strip()]
        if missing:
            raise InvalidPermissionError(f"Permission is missing {', '.join(missing)}: {dict(permission)!r}")
        return _build_requirement(
            str(permission["resource"]).strip().lower(),
            str(permission["action"]).strip().lower(),
            str(permission["scope"]).strip().lower(),
            permission.get("conditions") or {},
        )
    raise InvalidPermissionError(f"Unsupported permission declaration: {permission!r}")


def _build_requirement(resource: str, action: str, scope: str, conditions: Mapping[str, Any]) -> PermissionRequirement:
    if WILDCARD in (resource, action, scope):
        raise InvalidPermissionError(
            f"Wildcards are only allowed in granted permissions: {resource}.{action}.{scope}"
        )
    if "." in resource or "." in action:
        raise InvalidPermissionError(f"Permission segments must not contain dots: {resource}.{action}.{scope}")
    scope = canonical_scope(scope)
    if scope_level(scope) < 0:
        raise InvalidPermissionError(f"Unknown permission scope: {scope!r}")
    return PermissionRequirement(resource=resource, action=action, scope=scope, conditions=dict(conditions))


def matches_permission(required: str, granted: str) -> bool:
    """判断授予的权限字符串是否满足要求的权限字符串。"""

    if not is_well_formed(required) or not is_well_formed(granted):
        return False

    req_resource, req_action, req_scope = split_permission(required)
    grant_resource, grant_action, grant_scope = split_permission(granted)

    if grant_resource != WILDCARD and grant_resource != req_resource:
        return False
    if grant_action != WILDCARD and grant_action != req_action:
        return False

    required_level = scope_level(req_scope)
    granted_level = scope_level(grant_scope)
    # 任一侧 scope 未知都视为不满足
    if required_level < 0 or granted_level < 0:
        return False
    return granted_level >= required_level


def find_matches(required: PermissionLike, granted: Iterable[str]) -> list[str]:
    """返回全部满足要求的授予权限（保持原顺序）。"""

    key = normalize_permission(required).key
    return [item for item in granted if matches_permission(key, item)]
