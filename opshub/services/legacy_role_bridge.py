"""旧版角色白名单到权限字符串的迁移桥。

只用于兼容仍以 ``roles`` 声明的历史路由；新路由请直接声明权限要求。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Protocol

from opshub.services.role_registry import SystemRole, coerce_role


@dataclass(frozen=True, slots=True)
class OperationRef:
    """被保护的操作：所属容器（控制器/路由模块）与操作名。"""

    container: str
    name: str


class LegacyRoleBridge(Protocol):
    def translate(self, roles: Iterable[str], operation: OperationRef | None) -> list[str]: ...


ROLE_SCOPES: dict[SystemRole, str] = {
    SystemRole.PLATFORM_ADMIN: "platform",
    SystemRole.ORGANIZATION_OWNER: "organization",
    SystemRole.ORGANIZATION_ADMIN: "organization",
    SystemRole.PROPERTY_MANAGER: "property",
    SystemRole.DEPARTMENT_ADMIN: "department",
    SystemRole.STAFF: "department",
    SystemRole.CLIENT: "own",
    SystemRole.VENDOR: "own",
}

# 操作名前缀 -> 动作
OPERATION_ACTIONS: tuple[tuple[str, str], ...] = (
    ("find_all", "read"),
    ("find_one", "read"),
    ("find", "read"),
    ("list", "read"),
    ("get", "read"),
    ("retrieve", "read"),
    ("search", "read"),
    ("export", "read"),
    ("create", "create"),
    ("add", "create"),
    ("upload", "create"),
    ("update", "update"),
    ("patch", "update"),
    ("edit", "update"),
    ("change", "update"),
    ("delete", "delete"),
    ("remove", "delete"),
    ("destroy", "delete"),
    ("approve", "approve"),
    ("reject", "approve"),
    ("assign", "assign"),
)

_CONTAINER_SUFFIXES = ("_controller", "_router", "_routes", "_service", "_resource")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _snake(value: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", value.strip()).replace("-", "_").lower()


def infer_resource(container: str) -> str | None:
    """``ReservationsController`` / ``opshub.apps.api.controllers.reservations`` -> ``reservations``。"""

    name = _snake(container.rsplit(".", 1)[-1])
    for suffix in _CONTAINER_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    name = name.strip("_")
    return name or None


def infer_action(operation_name: str) -> str | None:
    name = _snake(operation_name)
    for prefix, action in OPERATION_ACTIONS:
        if name == prefix or name.startswith(prefix + "_"):
            return action
    return None


class NameInferenceRoleBridge:
    """从容器名推断资源、从操作名推断动作、从角色推断 scope。"""

    def __init__(self, role_scopes: dict[SystemRole, str] | None = None) -> None:
        self.role_scopes = role_scopes or ROLE_SCOPES

    def translate(self, roles: Iterable[str], operation: OperationRef | None) -> list[str]:
        if operation is None:
            return []
        resource = infer_resource(operation.container)
        action = infer_action(operation.name)
        if not resource or not action:
            return []

        permissions: list[str] = []
        for raw_role in roles:
            role = coerce_role(raw_role)
            scope = self.role_scopes.get(role) if role else None
            if scope:
                permissions.append(f"{resource}.{action}.{scope}")
        return list(dict.fromkeys(permissions))
