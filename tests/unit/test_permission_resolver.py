from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from opshub.services.permission_cache import MemoryPermissionCache
from opshub.services.permission_resolver import PermissionResolver
from opshub.services.role_registry import legacy_permissions_for

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def _resolver(store, cache=None, **kwargs) -> PermissionResolver:
    if cache is None:
        cache = MemoryPermissionCache()
    return PermissionResolver(store, cache, now=lambda: NOW, **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_denial_wins_over_custom_role_grant(store, make_user) -> None:
    store.grant_role("user-1", "documents.read.property", "units.read.property")
    store.set_direct("user-1", "documents.read.property", granted=False)

    permissions = await _resolver(store).effective_permissions(make_user("STAFF"))

    assert "documents.read.property" not in permissions
    assert permissions == ["units.read.property"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_denial_removes_only_exact_string(store, make_user) -> None:
    store.grant_role("user-1", "*.read.property")
    store.set_direct("user-1", "documents.read.property", granted=False)

    permissions = await _resolver(store).effective_permissions(make_user("STAFF"))

    assert permissions == ["*.read.property"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_expired_entries_are_ignored(store, make_user) -> None:
    past = NOW - timedelta(minutes=1)
    future = NOW + timedelta(days=1)
    store.grant_role("user-1", "reports.read.property", expires_at=past)
    store.grant_role("user-1", "units.read.property", expires_at=future)
    store.set_direct("user-1", "guests.read.property", expires_at=past)
    store.set_direct("user-1", "units.read.property", granted=False, expires_at=past)
    store.set_direct("user-1", "tasks.read.own", is_active=False)

    permissions = await _resolver(store).effective_permissions(make_user("STAFF"))

    assert permissions == ["units.read.property"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_direct_grants_are_deduplicated_and_lowercased(store, make_user) -> None:
    store.grant_role("user-1", "Units.Read.Property", "bad-permission")
    store.set_direct("user-1", "units.read.property")
    store.set_direct("user-1", "guests.read.property")

    permissions = await _resolver(store).effective_permissions(make_user("STAFF"))

    assert permissions == ["units.read.property", "guests.read.property"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_aggregate_falls_back_to_legacy(store, make_user) -> None:
    resolved = await _resolver(store).resolve(make_user("STAFF"))

    assert resolved.legacy_applied is True
    assert list(resolved.permissions) == legacy_permissions_for("STAFF")
    assert resolved.has_custom_permissions is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_custom_permissions_replace_legacy_except_for_top_admin(store, make_user) -> None:
    store.grant_role("user-1", "units.read.property")
    store.grant_role("admin-1", "audit.read.organization")
    resolver = _resolver(store)

    staff = await resolver.resolve(make_user("STAFF"))
    admin = await resolver.resolve(make_user("PLATFORM_ADMIN", id="admin-1"))

    assert list(staff.permissions) == ["units.read.property"]
    assert admin.permissions[0] == "audit.read.organization"
    assert "*.*.platform" in admin.permissions
    assert admin.legacy_applied is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cache_hit_skips_store_until_cleared(store, make_user) -> None:
    store.grant_role("user-1", "units.read.property")
    resolver = _resolver(store)
    user = make_user("STAFF")

    await resolver.effective_permissions(user)
    await resolver.effective_permissions(user)
    assert store.calls == 1

    store.grants["user-1"] = []
    store.grant_role("user-1", "guests.read.property")
    assert await resolver.effective_permissions(user) == ["units.read.property"]

    await resolver.clear_cache("user-1")
    assert await resolver.effective_permissions(user) == ["guests.read.property"]
    assert store.calls == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cache_holds_database_part_only(store, cache, make_user) -> None:
    resolver = _resolver(store, cache)

    await resolver.resolve(make_user("STAFF"))

    assert await cache.get("user-1") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_store_failure_is_fail_closed_and_not_cached(store, cache, make_user) -> None:
    store.error = RuntimeError("database down")
    resolver = _resolver(store, cache)

    staff = await resolver.resolve(make_user("STAFF"))
    assert staff.permissions == ()
    assert staff.failed is True
    assert await cache.get("user-1") is None

    admin = await resolver.resolve(make_user("PLATFORM_ADMIN", id="admin-1"))
    assert "*.*.platform" in admin.permissions

    store.error = None
    store.grant_role("user-1", "units.read.property")
    assert await resolver.effective_permissions(make_user("STAFF")) == ["units.read.property"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_slow_store_times_out(make_user) -> None:
    class SlowStore:
        async def find_active_custom_role_assignments(self, user_id, now):
            await asyncio.sleep(1)
            return []

        async def find_active_user_permissions(self, user_id, now):
            return []

    resolver = _resolver(SlowStore(), timeout_seconds=0.01)
    resolved = await resolver.resolve(make_user("STAFF"))

    assert resolved.failed is True
    assert resolved.permissions == ()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_broken_cache_degrades_to_store(store, make_user) -> None:
    class BrokenCache:
        async def get(self, user_id):
            raise ConnectionError("redis gone")

        async def set(self, user_id, permissions, ttl_seconds):
            raise ConnectionError("redis gone")

        async def invalidate(self, user_id):
            raise ConnectionError("redis gone")

    store.grant_role("user-1", "units.read.property")
    resolver = _resolver(store, BrokenCache())

    assert await resolver.effective_permissions(make_user("STAFF")) == ["units.read.property"]
    with pytest.raises(ConnectionError):
        await resolver.clear_cache("user-1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_summary_lists_sources(store, make_user) -> None:
    store.grant_role("user-1", "units.read.property")
    store.set_direct("user-1", "guests.read.property")
    store.set_direct("user-1", "units.read.property", granted=False)

    summary = await _resolver(store).summary(make_user("STAFF"))
    payload = summary.as_dict()

    assert payload["custom_roles"][0]["permissions"] == ["units.read.property"]
    assert payload["direct_permissions"] == ["guests.read.property"]
    assert payload["denied_permissions"] == ["units.read.property"]
    assert payload["effective_permissions"] == ["guests.read.property"]
    assert payload["legacy_applied"] is False
