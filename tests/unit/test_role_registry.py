from __future__ import annotations

import pytest

from opshub.services import role_registry
from opshub.services.role_registry import SystemRole


@pytest.mark.unit
def test_self_escalation_only_for_top_admin() -> None:
    for role in SystemRole:
        expected = role is SystemRole.PLATFORM_ADMIN
        assert role_registry.can_assign_role(role, role) is expected


@pytest.mark.unit
def test_assignment_requires_strictly_lower_level() -> None:
    assert role_registry.can_assign_role("property-manager", "organization-admin") is False
    assert role_registry.can_assign_role("organization-owner", "department-admin") is True
    assert role_registry.can_assign_role(SystemRole.PLATFORM_ADMIN, SystemRole.ORGANIZATION_OWNER) is True
    assert role_registry.can_assign_role("STAFF", "CLIENT") is True
    assert role_registry.can_assign_role("CLIENT", "VENDOR") is False


@pytest.mark.unit
def test_unknown_roles_cannot_assign_or_be_assigned() -> None:
    assert role_registry.can_assign_role("ghost", "CLIENT") is False
    assert role_registry.can_assign_role("PLATFORM_ADMIN", "ghost") is False
    assert role_registry.role_info("ghost").name == "Unknown Role"
    assert role_registry.role_level(None) == 0
    assert role_registry.legacy_permissions_for("ghost") == []


@pytest.mark.unit
def test_assignable_roles_for_property_manager() -> None:
    assert role_registry.assignable_roles("PROPERTY_MANAGER") == [
        SystemRole.DEPARTMENT_ADMIN,
        SystemRole.STAFF,
        SystemRole.CLIENT,
        SystemRole.VENDOR,
    ]
    assert role_registry.assignable_roles(SystemRole.PLATFORM_ADMIN) == list(SystemRole)


@pytest.mark.unit
def test_coerce_role_accepts_both_spellings() -> None:
    assert role_registry.coerce_role("department-admin") is SystemRole.DEPARTMENT_ADMIN
    assert role_registry.coerce_role("ORGANIZATION_OWNER") is SystemRole.ORGANIZATION_OWNER
    assert role_registry.coerce_role(SystemRole.STAFF) is SystemRole.STAFF
    assert role_registry.coerce_role(7) is None
    assert role_registry.is_top_admin("platform-admin") is True


@pytest.mark.unit
def test_role_info_metadata() -> None:
    info = role_registry.role_info(SystemRole.VENDOR)
    assert info.level == 3
    assert info.user_type == "VENDOR"
    assert info.as_dict()["capabilities"]
    assert [role for role, _ in role_registry.all_system_roles()] == list(SystemRole)


@pytest.mark.unit
def test_legacy_permissions_are_well_formed() -> None:
    from opshub.services.permission_grammar import is_well_formed, scope_level

    for role in SystemRole:
        for permission in role_registry.legacy_permissions_for(role):
            assert is_well_formed(permission), permission
            assert scope_level(permission.rsplit(".", 1)[-1]) >= 0, permission
