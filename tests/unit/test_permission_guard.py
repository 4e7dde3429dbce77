from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from opshub.middleware.permission import apply_permission_filters, guard
from opshub.services.permission_gate import require_permission, require_roles
from opshub.services.principal import CurrentUser

USERS = {
    "staff": CurrentUser(id="user-1", role="STAFF", organization_id="org-1", property_id="prop-1", department_id="dept-1"),
    "client": CurrentUser(id="client-1", role="CLIENT", organization_id="org-1", user_type="CLIENT"),
}


class HeaderUserMiddleware(BaseHTTPMiddleware):
    """测试用：按请求头选择当前用户。"""

    async def dispatch(self, request: Request, call_next):
        request.state.current_user = USERS.get(request.headers.get("x-test-user", ""))
        return await call_next(request)


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(HeaderUserMiddleware)

    @app.get("/open")
    async def open_route() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/guests", dependencies=[guard(require_permission("guests.read.property"))])
    async def list_guests(request: Request) -> dict:
        return apply_permission_filters({"archived": False}, request)

    @app.post(
        "/properties/{propertyId}/documents",
        dependencies=[guard(require_permission({"resource": "documents", "action": "read", "scope": "department", "conditions": {"sameProperty": True}}))],
    )
    async def create_document(propertyId: str, request: Request) -> dict:
        return {"propertyId": propertyId}

    @app.get("/legacy", dependencies=[guard(require_roles("STAFF"))])
    async def legacy_route() -> dict[str, bool]:
        return {"ok": True}

    return app


async def _client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=build_app())
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_undeclared_route_is_open(components) -> None:
    async with await _client() as client:
        response = await client.get("/open")
    assert response.status_code == 200


@pytest.mark.unit
@pytest.mark.asyncio
async def test_guarded_route_requires_user(components) -> None:
    async with await _client() as client:
        response = await client.get("/guests")
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication required"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_guarded_route_exposes_scope_filters(components) -> None:
    async with await _client() as client:
        allowed = await client.get("/guests", headers={"x-test-user": "staff"})
        denied = await client.get("/guests", headers={"x-test-user": "client"})

    assert allowed.status_code == 200
    assert allowed.json() == {"archived": False, "propertyId": "prop-1", "organizationId": "org-1"}
    assert denied.status_code == 403
    assert denied.json()["detail"].startswith("Access denied")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_conditions_read_path_params(components) -> None:
    async with await _client() as client:
        same = await client.post("/properties/prop-1/documents", headers={"x-test-user": "staff"}, json={})
        other = await client.post("/properties/prop-9/documents", headers={"x-test-user": "staff"}, json={})

    assert same.status_code == 200
    assert other.status_code == 403
    assert other.json()["detail"].startswith("Access denied")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_legacy_role_route(components) -> None:
    async with await _client() as client:
        staff = await client.get("/legacy", headers={"x-test-user": "staff"})
        other = await client.get("/legacy", headers={"x-test-user": "client"})

    assert staff.status_code == 200
    assert other.status_code == 403
