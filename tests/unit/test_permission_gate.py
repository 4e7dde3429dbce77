from __future__ import annotations

import pytest

from opshub.services.legacy_role_bridge import NameInferenceRoleBridge, OperationRef
from opshub.services.permission_gate import (
    PermissionGate,
    RouteRequirements,
    automatic_scope_filters,
    conditional_permission,
    require_permission,
    require_roles,
)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_undeclared_operation_is_allowed_without_user(components) -> None:
    decision = await components.gate.check(RouteRequirements(), None)
    assert decision.allowed is True
    assert decision.scope_filters == {}

    assert (await components.gate.check(None, None)).allowed is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_declared_operation_without_user_is_401(components) -> None:
    decision = await components.gate.check(require_permission("units.read.property"), None)

    assert decision.allowed is False
    assert decision.status_code == 401
    assert decision.reason == "Authentication required"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_permissions_use_or_semantics(components, make_user) -> None:
    requirements = require_permission("payroll.approve.organization", "units.read.property")

    decision = await components.gate.check(requirements, make_user("STAFF"))

    assert decision.allowed is True
    assert decision.scope_filters == {"propertyId": "prop-1", "organizationId": "org-1"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_denied_permission_is_403_with_reason(components, make_user) -> None:
    decision = await components.gate.check(require_permission("payroll.approve.organization"), make_user("STAFF"))

    assert decision.allowed is False
    assert decision.status_code == 403
    assert decision.reason.startswith("Access denied: None of the required permissions granted")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_route_scope_adds_automatic_filters(components, make_user) -> None:
    requirements = require_permission("documents.read.department", scope="own")

    decision = await components.gate.check(requirements, make_user("STAFF"))

    assert decision.allowed is True
    assert decision.scope_filters["userId"] == "user-1"
    assert decision.scope_filters["departmentId"] == "dept-1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_conditional_permission_runs_predicate(components, make_user) -> None:
    async def owns_target(context) -> bool:
        return context.resource_owner_id == context.user.id

    requirements = conditional_permission("documents.read.department", owns_target, "Only the owner may read")

    mine = await components.gate.check(requirements, make_user("STAFF"), params={"userId": "user-1"})
    theirs = await components.gate.check(requirements, make_user("STAFF"), params={"userId": "user-2"})

    assert mine.allowed is True
    assert theirs.allowed is False
    assert theirs.reason == "Access denied: Only the owner may read"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_conditional_permission_checks_base_first(components, make_user) -> None:
    calls: list[str] = []

    def predicate(context) -> bool:
        calls.append(context.user.id)
        return True

    decision = await components.gate.check(
        conditional_permission("payroll.approve.organization", predicate),
        make_user("STAFF"),
    )

    assert decision.allowed is False
    assert calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_predicate_error_is_denied(components, make_user) -> None:
    def broken(_context) -> bool:
        raise KeyError("missing")

    decision = await components.gate.check(
        conditional_permission("documents.read.department", broken),
        make_user("STAFF"),
    )

    assert decision.allowed is False
    assert decision.reason == "Permission evaluation error"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_legacy_roles_allow_list(components, make_user) -> None:
    requirements = require_roles("PROPERTY_MANAGER", "organization-admin")

    allowed = await components.gate.check(requirements, make_user("ORGANIZATION_ADMIN"))
    denied = await components.gate.check(requirements, make_user("STAFF"))

    assert allowed.allowed is True
    assert denied.allowed is False
    assert denied.status_code == 403


@pytest.mark.unit
@pytest.mark.asyncio
async def test_legacy_roles_skipped_when_permissions_declared(components, make_user) -> None:
    requirements = RouteRequirements(permissions=("units.read.property",), roles=("PLATFORM_ADMIN",))

    decision = await components.gate.check(requirements, make_user("STAFF"))

    assert decision.allowed is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_bridge_translates_roles_when_legacy_inactive(components, make_user) -> None:
    gate = PermissionGate(
        components.evaluator,
        legacy_roles_active=False,
        legacy_bridge=NameInferenceRoleBridge(),
    )
    requirements = require_roles(
        "STAFF",
        operation=OperationRef(container="GuestsController", name="findAll"),
    )

    staff = await gate.check(requirements, make_user("STAFF"))
    client = await gate.check(requirements, make_user("CLIENT", id="client-1"))

    assert staff.allowed is True
    assert client.allowed is False
    assert "guests.read.department" in client.reason

    property_requirements = require_roles(
        "PROPERTY_MANAGER",
        operation=OperationRef(container="opshub.apps.api.controllers.guests", name="list_guests"),
    )
    manager = await gate.check(property_requirements, make_user("PROPERTY_MANAGER", id="pm-1"))
    assert manager.allowed is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_roles_without_bridge_are_denied_when_legacy_inactive(components, make_user) -> None:
    gate = PermissionGate(components.evaluator, legacy_roles_active=False)

    decision = await gate.check(require_roles("STAFF"), make_user("STAFF"))

    assert decision.allowed is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unexpected_error_is_permission_check_failed(components, make_user, monkeypatch) -> None:
    async def explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(components.evaluator, "evaluate_any", explode)

    decision = await components.gate.check(require_permission("units.read.property"), make_user("STAFF"))

    assert decision.allowed is False
    assert decision.reason == "Permission check failed"


@pytest.mark.unit
def test_automatic_scope_filters(make_user) -> None:
    user = make_user("STAFF")

    assert automatic_scope_filters(user, "organization") == {"organizationId": "org-1"}
    assert automatic_scope_filters(user, "property") == {"propertyId": "prop-1"}
    assert automatic_scope_filters(user, "department") == {"departmentId": "dept-1"}
    assert automatic_scope_filters(user, "own") == {"userId": "user-1"}
    assert automatic_scope_filters(user, "platform") == {}
