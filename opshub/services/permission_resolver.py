"""用户有效权限解析。

聚合顺序：
1. 激活且未过期的自定义角色分配，展开为 ``resource.action.scope``；
2. 激活且未过期的直接权限，granted=True 追加，granted=False 精确移除（拒绝优先）；
3. 去重；
4. 结果为空或用户是顶级管理员时，并入旧版角色权限作为兜底。

存储层异常或超时只记录日志并按空集处理（失败结果不写缓存），
此时只有顶级管理员保留旧版兜底，其它角色一律拒绝。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from opshub.services.permission_cache import PermissionCache
from opshub.services.permission_grammar import is_well_formed
from opshub.services.permission_store import PermissionStore, is_current
from opshub.services.principal import CurrentUser, as_current_user
from opshub.services.role_registry import is_top_admin, legacy_permissions_for

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_TIMEOUT_SECONDS = 5.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ResolvedPermissions:
    """一次解析的完整结果。"""

    permissions: tuple[str, ...]
    database_permissions: tuple[str, ...] = ()
    legacy_applied: bool = False
    failed: bool = False

    @property
    def has_custom_permissions(self) -> bool:
        return bool(self.database_permissions)


@dataclass(slots=True)
class PermissionSummary:
    """用户权限明细，用于“我能做什么”页面。"""

    user_id: str
    role: str
    custom_roles: list[dict[str, Any]] = field(default_factory=list)
    direct_permissions: list[str] = field(default_factory=list)
    denied_permissions: list[str] = field(default_factory=list)
    effective_permissions: list[str] = field(default_factory=list)
    legacy_applied: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "custom_roles": self.custom_roles,
            "direct_permissions": self.direct_permissions,
            "denied_permissions": self.denied_permissions,
            "effective_permissions": self.effective_permissions,
            "legacy_applied": self.legacy_applied,
        }


class PermissionResolver:
    """按用户聚合有效权限，并按用户 ID 缓存数据库部分。"""

    def __init__(
        self,
        store: PermissionStore,
        cache: PermissionCache,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._now = now

    async def effective_permissions(self, user: Any) -> list[str]:
        resolved = await self.resolve(user)
        return list(resolved.permissions)

    async def resolve(self, user: Any) -> ResolvedPermissions:
        current = as_current_user(user)
        if current is None:
            return ResolvedPermissions(permissions=(), failed=True)

        failed = False
        database_permissions = await self._cache_get(current.id)
        if database_permissions is None:
            try:
                database_permissions = await asyncio.wait_for(
                    self._aggregate(current.id),
                    timeout=self.timeout_seconds,
                )
            except Exception:
                logger.exception("读取用户权限失败，按空权限处理 user=%s", current.id)
                database_permissions = []
                failed = True
            else:
                await self._cache_set(current.id, database_permissions)

        return self._apply_legacy_fallback(current, database_permissions, failed=failed)

    async def clear_cache(self, user_id: str) -> None:
        """用户角色或权限变更后必须调用，且须在变更流程返回前完成。"""

        await self.cache.invalidate(str(user_id))
        logger.debug("已清除权限缓存 user=%s", user_id)

    async def summary(self, user: Any) -> PermissionSummary:
        """不经过缓存，直接列出权限来源明细。"""

        current = as_current_user(user)
        if current is None:
            raise ValueError("user is required")

        now = self._now()
        grants = await self.store.find_active_custom_role_assignments(current.id, now)
        rows = await self.store.find_active_user_permissions(current.id, now)
        resolved = await self.resolve(current)

        summary = PermissionSummary(
            user_id=current.id,
            role=current.role_name,
            effective_permissions=list(resolved.permissions),
            legacy_applied=resolved.legacy_applied,
        )
        for grant in grants:
            if not is_current(grant.is_active, grant.expires_at, now):
                continue
            summary.custom_roles.append(
                {
                    "role_id": grant.role_id,
                    "name": grant.role_name,
                    "permissions": list(grant.permissions),
                    "expires_at": grant.expires_at.isoformat() if grant.expires_at else None,
                }
            )
        for row in rows:
            if not is_current(row.is_active, row.expires_at, now):
                continue
            if row.granted:
                summary.direct_permissions.append(row.permission)
            else:
                summary.denied_permissions.append(row.permission)
        return summary

    async def _aggregate(self, user_id: str) -> list[str]:
        now = self._now()
        accumulated: list[str] = []
        denied: set[str] = set()

        grants = await self.store.find_active_custom_role_assignments(user_id, now)
        for grant in grants:
            # 存储层已按条件过滤，这里再校验一次，防止实现遗漏
            if not is_current(grant.is_active, grant.expires_at, now):
                continue
            accumulated.extend(_clean(grant.permissions))

        rows = await self.store.find_active_user_permissions(user_id, now)
        for row in rows:
            if not is_current(row.is_active, row.expires_at, now):
                continue
            keys = _clean([row.permission])
            if row.granted:
                accumulated.extend(keys)
            else:
                denied.update(keys)

        permissions = [item for item in dict.fromkeys(accumulated) if item not in denied]
        logger.debug(
            "用户 %s 数据库权限 %d 条（自定义角色 %d 个，直接权限 %d 条）",
            user_id,
            len(permissions),
            len(grants),
            len(rows),
        )
        return permissions

    def _apply_legacy_fallback(
        self,
        user: CurrentUser,
        database_permissions: list[str],
        *,
        failed: bool,
    ) -> ResolvedPermissions:
        top_admin = is_top_admin(user.role)
        if failed:
            apply_legacy = top_admin
        else:
            apply_legacy = top_admin or not database_permissions

        permissions = list(database_permissions)
        if apply_legacy:
            permissions = list(dict.fromkeys([*permissions, *legacy_permissions_for(user.role)]))

        return ResolvedPermissions(
            permissions=tuple(permissions),
            database_permissions=tuple(database_permissions),
            legacy_applied=apply_legacy,
            failed=failed,
        )

    async def _cache_get(self, user_id: str) -> list[str] | None:
        try:
            return await self.cache.get(user_id)
        except Exception:
            logger.warning("权限缓存读取失败，回源查询 user=%s", user_id, exc_info=True)
            return None

    async def _cache_set(self, user_id: str, permissions: list[str]) -> None:
        try:
            await self.cache.set(user_id, permissions, self.ttl_seconds)
        except Exception:
            logger.warning("权限缓存写入失败 user=%s", user_id, exc_info=True)


def _clean(permissions: Any) -> list[str]:
    cleaned: list[str] = []
    for item in permissions or ():
        value = str(item).strip().lower()
        if is_well_formed(value):
            cleaned.append(value)
        else:
            logger.warning("忽略格式非法的权限字符串: %r", item)
    return cleaned
