"""鉴权与授权相关异常。

授权判定本身只返回结果对象，不抛异常；以下异常只在 HTTP 边界与管理流程中使用。
"""

from __future__ import annotations

from fastapi import HTTPException


class AuthorizationError(HTTPException):
    """授权失败的基类，直接复用 FastAPI 的 HTTPException 响应。"""

    status_code_default = 403

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        super().__init__(status_code=status_code or self.status_code_default, detail=reason)
        self.reason = reason


class AuthenticationMissing(AuthorizationError):
    status_code_default = 401

    def __init__(self, reason: str = "Authentication required") -> None:
        super().__init__(reason)


class PermissionDenied(AuthorizationError):
    status_code_default = 403


class AssignmentError(Exception):
    """角色/权限分配流程中的业务错误。"""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
