"""权限目录服务层：启动时补齐默认权限条目。"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from opshub.models import Permission
from opshub.services.permission_grammar import parse_permission

logger = logging.getLogger(__name__)

# (permission, name, category)
DEFAULT_PERMISSIONS: tuple[tuple[str, str, str], ...] = (
    ("user.create.department", "Create Department Users", "HR"),
    ("user.read.department", "View Department Users", "HR"),
    ("user.read.property", "View Property Users", "HR"),
    ("user.read.own", "View Own Profile", "HR"),
    ("user.update.own", "Update Own Profile", "HR"),
    ("user.update.department", "Update Department Users", "HR"),
    ("payslip.read.own", "View Own Payslips", "HR"),
    ("payslip.read.department", "View Department Payslips", "HR"),
    ("payslip.create.department", "Create Department Payslips", "HR"),
    ("vacation.create.own", "Request Vacation", "HR"),
    ("vacation.read.own", "View Own Vacations", "HR"),
    ("vacation.approve.department", "Approve Department Vacations", "HR"),
    ("training.read.own", "View Own Training", "Training"),
    ("training.create.department", "Create Department Training", "Training"),
    ("training.assign.department", "Assign Department Training", "Training"),
    ("documents.read.own", "View Own Documents", "Documents"),
    ("documents.read.department", "View Department Documents", "Documents"),
    ("documents.create.department", "Upload Department Documents", "Documents"),
    ("documents.delete.own", "Delete Own Documents", "Documents"),
    ("units.read.property", "View Property Units", "Operations"),
    ("units.update.property", "Update Property Units", "Operations"),
    ("reservations.read.property", "View Property Reservations", "Operations"),
    ("reservations.create.property", "Create Property Reservations", "Operations"),
    ("guests.read.property", "View Property Guests", "Operations"),
    ("tasks.create.department", "Create Department Tasks", "Operations"),
    ("tasks.read.own", "View Own Tasks", "Operations"),
    ("tasks.update.own", "Update Own Tasks", "Operations"),
    ("role.read.department", "View Assignable Roles", "Administration"),
    ("role.read.property", "View Property Roles", "Administration"),
    ("role.assign.department", "Assign Department Roles", "Administration"),
    ("role.assign.organization", "Assign Organization Roles", "Administration"),
    ("permission.grant.organization", "Grant Permissions", "Administration"),
    ("audit.read.organization", "View Audit Logs", "Administration"),
)


def build_default_permissions() -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for permission, name, category in DEFAULT_PERMISSIONS:
        requirement = parse_permission(permission)
        items.append(
            {
                "resource": requirement.resource,
                "action": requirement.action,
                "scope": requirement.scope,
                "name": name,
                "description": f"{name} ({requirement.scope} scope)",
                "category": category,
            }
        )
    return items


async def permission_keys(permission_ids: Iterable[Any]) -> list[str]:
    ids = list(permission_ids)
    if not ids:
        return []
    items = await Permission.find({"_id": {"$in": ids}}).to_list()
    return sorted(item.key for item in items)


async def get_permission(resource: str, action: str, scope: str) -> Permission | None:
    return await Permission.find_one({"resource": resource, "action": action, "scope": scope})


async def ensure_permission_catalog() -> int:
    """只补缺失条目，不覆盖已有的名称与描述。返回新增数量。"""

    created = 0
    for payload in build_default_permissions():
        if await get_permission(payload["resource"], payload["action"], payload["scope"]):
            continue
        await Permission(**payload).insert()
        created += 1

    if created:
        logger.info("权限目录已补齐 %d 条", created)
    return created
