"""FastAPI 应用入口。"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from .apps.api.controllers.assignments import router as assignments_router
from .apps.api.controllers.permissions import router as permissions_router
from .apps.api.controllers.system_roles import router as system_roles_router
from .config import APP_NAME, SECRET_KEY
from .db import close_db, init_db
from .middleware.auth import CurrentUserMiddleware
from .services.authz_service import init_authz
from .services.permission_catalog_service import ensure_permission_catalog
from .services.redis_service import close_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：启动时初始化资源，退出时释放资源。"""

    await init_db()
    await ensure_permission_catalog()
    await init_authz()
    try:
        yield
    finally:
        await close_redis()
        await close_db()


app = FastAPI(title=APP_NAME, lifespan=lifespan)
app.add_middleware(CurrentUserMiddleware)
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY, session_cookie="opshub_session")
app.include_router(permissions_router)
app.include_router(system_roles_router)
app.include_router(assignments_router)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
