"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


def _to_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """安全解析整数环境变量。"""

    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_float(value: str | None, default: float, *, minimum: float = 0.0) -> float:
    """安全解析浮点环境变量。"""

    try:
        parsed = float(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_bool(value: str | None, default: bool = False) -> bool:
    """安全解析布尔环境变量。"""

    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


APP_NAME = os.getenv("APP_NAME", "OpsHub")
APP_ENV = os.getenv("APP_ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "opshub")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

APP_PORT = _to_int(os.getenv("APP_PORT"), 8000, minimum=1)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

UVICORN_HOST = os.getenv("UVICORN_HOST", "0.0.0.0")
UVICORN_LOG_LEVEL = os.getenv("UVICORN_LOG_LEVEL", "info")
UVICORN_RELOAD = _to_bool(os.getenv("UVICORN_RELOAD"), default=False)

# 权限缓存：memory 为进程内缓存，redis 为多进程共享缓存
PERMISSION_CACHE_BACKEND = os.getenv("PERMISSION_CACHE_BACKEND", "memory").strip().lower()
PERMISSION_CACHE_TTL_SECONDS = _to_int(os.getenv("PERMISSION_CACHE_TTL_SECONDS"), 300, minimum=1)
PERMISSION_CACHE_PREFIX = os.getenv("PERMISSION_CACHE_PREFIX", "opshub:perms:")
PERMISSION_STORE_TIMEOUT_SECONDS = _to_float(os.getenv("PERMISSION_STORE_TIMEOUT_SECONDS"), 5.0, minimum=0.1)

# 旧版角色白名单仍在生效；关闭后路由上的 roles 声明将被忽略
LEGACY_ROLES_ACTIVE = _to_bool(os.getenv("LEGACY_ROLES_ACTIVE"), default=True)
LEGACY_ROLE_BRIDGE = _to_bool(os.getenv("LEGACY_ROLE_BRIDGE"), default=True)
