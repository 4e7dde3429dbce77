"""系统角色元数据注册表（纯查表，无 I/O）。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

UserType = Literal["INTERNAL", "CLIENT", "VENDOR"]


class SystemRole(str, Enum):
    """固定的系统角色。"""

    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    ORGANIZATION_OWNER = "ORGANIZATION_OWNER"
    ORGANIZATION_ADMIN = "ORGANIZATION_ADMIN"
    PROPERTY_MANAGER = "PROPERTY_MANAGER"
    DEPARTMENT_ADMIN = "DEPARTMENT_ADMIN"
    STAFF = "STAFF"
    CLIENT = "CLIENT"
    VENDOR = "VENDOR"


TOP_ADMIN_ROLE = SystemRole.PLATFORM_ADMIN


@dataclass(frozen=True, slots=True)
class RoleInfo:
    """角色展示信息与层级。"""

    name: str
    description: str
    level: int
    user_type: UserType
    capabilities: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "user_type": self.user_type,
            "capabilities": list(self.capabilities),
        }


UNKNOWN_ROLE_INFO = RoleInfo(
    name="Unknown Role",
    description="Role information not found",
    level=0,
    user_type="INTERNAL",
)

ROLE_INFO: dict[SystemRole, RoleInfo] = {
    SystemRole.PLATFORM_ADMIN: RoleInfo(
        name="Platform Admin",
        description="Full system access across all organizations and properties",
        level=10,
        user_type="INTERNAL",
        capabilities=("Manage all users", "Manage all roles", "System configuration", "Cross-tenant access"),
    ),
    SystemRole.ORGANIZATION_OWNER: RoleInfo(
        name="Organization Owner",
        description="Owns and manages entire hotel chains or groups",
        level=9,
        user_type="INTERNAL",
        capabilities=("Manage organization", "Create properties", "Manage org users", "Assign org roles"),
    ),
    SystemRole.ORGANIZATION_ADMIN: RoleInfo(
        name="Organization Admin",
        description="Administers organization settings and properties",
        level=8,
        user_type="INTERNAL",
        capabilities=("Update organization", "Manage properties", "Limited user management"),
    ),
    SystemRole.PROPERTY_MANAGER: RoleInfo(
        name="Property Manager",
        description="Manages individual hotel properties and operations",
        level=7,
        user_type="INTERNAL",
        capabilities=("Hotel operations", "Property staff", "Guest management", "Vendor coordination"),
    ),
    SystemRole.DEPARTMENT_ADMIN: RoleInfo(
        name="Department Admin",
        description="Manages specific departments within properties",
        level=6,
        user_type="INTERNAL",
        capabilities=("Department management", "Team coordination", "Training oversight"),
    ),
    SystemRole.STAFF: RoleInfo(
        name="Staff",
        description="Regular hotel staff with operational access",
        level=5,
        user_type="INTERNAL",
        capabilities=("Daily operations", "Guest service", "Basic reporting"),
    ),
    SystemRole.CLIENT: RoleInfo(
        name="Client",
        description="External clients with limited access to their data",
        level=2,
        user_type="CLIENT",
        capabilities=("View own reservations", "Update profile", "Access client portal"),
    ),
    SystemRole.VENDOR: RoleInfo(
        name="Vendor",
        description="External vendors and suppliers with work-related access",
        level=3,
        user_type="VENDOR",
        capabilities=("Vendor portal access", "Update work status", "Receive notifications"),
    ),
}

# 旧版角色 -> 权限字符串，仅作为兜底
LEGACY_ROLE_PERMISSIONS: dict[SystemRole, tuple[str, ...]] = {
    SystemRole.PLATFORM_ADMIN: (
        "*.*.platform",
        "*.*.organization",
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "role.*.platform",
        "role.assign.platform",
        "system.*.platform",
    ),
    SystemRole.ORGANIZATION_OWNER: (
        "*.*.organization",
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "role.create.organization",
        "role.assign.organization",
        "role.read.organization",
    ),
    SystemRole.ORGANIZATION_ADMIN: (
        "*.read.organization",
        "*.update.organization",
        "*.create.property",
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "role.read.organization",
        "role.assign.property",
    ),
    SystemRole.PROPERTY_MANAGER: (
        "*.*.property",
        "*.*.department",
        "*.*.own",
        "units.*.property",
        "guests.*.property",
        "reservations.*.property",
        "concierge.*.property",
        "vendors.*.property",
        "role.assign.department",
        "role.read.property",
    ),
    SystemRole.DEPARTMENT_ADMIN: (
        "*.read.property",
        "departments.read.property",
        "*.*.department",
        "*.*.own",
        "user.*.department",
        "training.*.department",
        "documents.*.department",
    ),
    SystemRole.STAFF: (
        "profile.read.department",
        "documents.read.department",
        "training.read.department",
        "benefits.read.property",
        "vacation.read.department",
        "*.*.own",
        "units.read.property",
        "guests.read.property",
        "reservations.read.property",
    ),
    SystemRole.CLIENT: (
        "profile.read.own",
        "profile.update.own",
        "reservations.read.own",
        "documents.read.own",
        "portal.access.own",
    ),
    SystemRole.VENDOR: (
        "profile.read.own",
        "profile.update.own",
        "vendors.read.own",
        "vendors.update.own",
        "portal.access.own",
        "concierge.read.property",
        "concierge.update.property",
    ),
}


def coerce_role(value: Any) -> SystemRole | None:
    """接受枚举、``PLATFORM_ADMIN`` 或 ``platform-admin`` 写法，未知返回 None。"""

    if isinstance(value, SystemRole):
        return value
    raw = getattr(value, "value", value)
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return SystemRole(normalized)
    except ValueError:
        return None


def is_top_admin(role: Any) -> bool:
    return coerce_role(role) is TOP_ADMIN_ROLE


def role_info(role: Any) -> RoleInfo:
    resolved = coerce_role(role)
    if resolved is None:
        return UNKNOWN_ROLE_INFO
    return ROLE_INFO.get(resolved, UNKNOWN_ROLE_INFO)


def role_level(role: Any) -> int:
    return role_info(role).level


def legacy_permissions_for(role: Any) -> list[str]:
    resolved = coerce_role(role)
    if resolved is None:
        return []
    return list(LEGACY_ROLE_PERMISSIONS.get(resolved, ()))


def can_assign_role(acting_role: Any, target_role: Any) -> bool:
    """顶级管理员可分配任意角色；其他角色只能分配严格低于自身层级的角色。"""

    if coerce_role(target_role) is None:
        return False
    if is_top_admin(acting_role):
        return True
    # 未知角色层级为 0，既不能分配也不会被误判为可分配
    acting_level = role_level(acting_role)
    if acting_level <= 0:
        return False
    return acting_level > role_level(target_role)


def assignable_roles(acting_role: Any) -> list[SystemRole]:
    return [role for role in SystemRole if can_assign_role(acting_role, role)]


def all_system_roles() -> list[tuple[SystemRole, RoleInfo]]:
    return [(role, role_info(role)) for role in SystemRole]
