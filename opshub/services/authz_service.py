"""鉴权组件装配（进程级懒加载单例）。"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from opshub.config import (
    LEGACY_ROLE_BRIDGE,
    LEGACY_ROLES_ACTIVE,
    PERMISSION_CACHE_BACKEND,
    PERMISSION_CACHE_PREFIX,
    PERMISSION_CACHE_TTL_SECONDS,
    PERMISSION_STORE_TIMEOUT_SECONDS,
)
from opshub.services.legacy_role_bridge import NameInferenceRoleBridge
from opshub.services.permission_cache import MemoryPermissionCache, PermissionCache, RedisPermissionCache
from opshub.services.permission_evaluator import PermissionEvaluator
from opshub.services.permission_gate import PermissionGate
from opshub.services.permission_resolver import PermissionResolver
from opshub.services.permission_store import BeaniePermissionStore, PermissionStore
from opshub.services.redis_service import get_redis, redis_available

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthzComponents:
    resolver: PermissionResolver
    evaluator: PermissionEvaluator
    gate: PermissionGate


_components: AuthzComponents | None = None


def build_components(
    store: PermissionStore,
    cache: PermissionCache,
    *,
    ttl_seconds: int = PERMISSION_CACHE_TTL_SECONDS,
    timeout_seconds: float = PERMISSION_STORE_TIMEOUT_SECONDS,
    legacy_roles_active: bool = LEGACY_ROLES_ACTIVE,
    legacy_bridge: bool = LEGACY_ROLE_BRIDGE,
) -> AuthzComponents:
    resolver = PermissionResolver(store, cache, ttl_seconds=ttl_seconds, timeout_seconds=timeout_seconds)
    evaluator = PermissionEvaluator(resolver)
    gate = PermissionGate(
        evaluator,
        legacy_roles_active=legacy_roles_active,
        legacy_bridge=NameInferenceRoleBridge() if legacy_bridge else None,
    )
    return AuthzComponents(resolver=resolver, evaluator=evaluator, gate=gate)


async def init_authz() -> AuthzComponents:
    """按配置选择缓存后端并装配组件；Redis 不可用时退回进程内缓存。"""

    global _components
    cache: PermissionCache
    if PERMISSION_CACHE_BACKEND == "redis" and await redis_available():
        cache = RedisPermissionCache(get_redis, prefix=PERMISSION_CACHE_PREFIX)
    else:
        if PERMISSION_CACHE_BACKEND == "redis":
            logger.warning("权限缓存退回进程内缓存")
        cache = MemoryPermissionCache()

    _components = build_components(BeaniePermissionStore(), cache)
    logger.info("鉴权组件已初始化 cache=%s ttl=%ds", type(cache).__name__, PERMISSION_CACHE_TTL_SECONDS)
    return _components


def set_components(components: AuthzComponents | None) -> None:
    global _components
    _components = components


def get_components() -> AuthzComponents:
    global _components
    if _components is None:
        _components = build_components(BeaniePermissionStore(), MemoryPermissionCache())
    return _components


def get_resolver() -> PermissionResolver:
    return get_components().resolver


def get_evaluator() -> PermissionEvaluator:
    return get_components().evaluator


def get_gate() -> PermissionGate:
    return get_components().gate
