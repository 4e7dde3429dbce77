"""当前用户加载中间件。"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from opshub.services import user_service
from opshub.services.principal import as_current_user


class CurrentUserMiddleware(BaseHTTPMiddleware):
    """根据 Session 中的 user_id 填充 ``request.state.current_user``。

    这里只负责识别身份，不做拦截；受保护路由在缺少用户时由授权关卡返回 401。
    """

    def __init__(self, app, exempt_paths: set[str] | None = None):
        super().__init__(app)
        self.exempt_paths = exempt_paths or set()

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.current_user = None
        request.state.permission_filters = {}

        if request.url.path in self.exempt_paths:
            return await call_next(request)

        user_id = request.session.get("user_id")
        if user_id:
            user = await user_service.get_user_by_id(user_id)
            if user is None or user.deleted_at is not None:
                request.session.clear()
            else:
                request.state.current_user = as_current_user(user)

        return await call_next(request)
