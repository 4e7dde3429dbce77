"""当前登录用户的鉴权视图。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from opshub.services.role_registry import SystemRole, coerce_role, role_info


@dataclass(frozen=True, slots=True)
class CurrentUser:
    """鉴权所需的最小用户信息，由认证层在请求进入前填充。"""

    id: str
    role: SystemRole | str
    organization_id: str | None = None
    property_id: str | None = None
    department_id: str | None = None
    user_type: str = "INTERNAL"

    @property
    def role_name(self) -> str:
        return getattr(self.role, "value", str(self.role))


def _read(source: Any, *names: str) -> Any:
    for name in names:
        if isinstance(source, Mapping):
            value = source.get(name)
        else:
            value = getattr(source, name, None)
        if value is not None:
            return value
    return None


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def as_current_user(source: Any) -> CurrentUser | None:
    """将 Beanie 文档、字典或任意带属性对象转换为 CurrentUser。"""

    if source is None:
        return None
    if isinstance(source, CurrentUser):
        return source

    user_id = _read(source, "id", "_id", "user_id", "userId")
    if user_id is None:
        return None

    raw_role = _read(source, "role")
    role = coerce_role(raw_role) or str(getattr(raw_role, "value", raw_role) or "")
    user_type = _read(source, "user_type", "userType") or role_info(role).user_type
    return CurrentUser(
        id=str(user_id),
        role=role,
        organization_id=_optional_str(_read(source, "organization_id", "organizationId")),
        property_id=_optional_str(_read(source, "property_id", "propertyId")),
        department_id=_optional_str(_read(source, "department_id", "departmentId")),
        user_type=str(user_type),
    )
