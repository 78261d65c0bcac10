"""
网关错误类型。

所有在请求处理前置阶段（尚未向客户端写出任何 chunk）发现的问题都以
GatewayError 子类抛出，由 routes.py 注册的异常处理器统一渲染为 ErrorResponse。
流式过程中出现的后端错误不会抛出到这里，而是折叠进累积答案后正常收尾。
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error payload returned for gateway failures:
    {
        "error": "backend_error",
        "message": "Backend returned HTTP 429",
        "code": 429,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


class GatewayError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.error_type,
            message=self.message,
            code=self.status_code,
            details=self.details,
        )


class RequestValidationError(GatewayError):
    """请求体格式错误或缺少 model，不会发起任何上游调用。"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_request"


class ConfigurationError(GatewayError):
    """未知 provider/模型、缺少凭证或签名函数：属于服务端配置问题。"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "configuration_error"


class SigningError(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "signing_error"


class BackendHttpError(GatewayError):
    """
    上游在开始流式输出之前返回了非 2xx 状态码。

    4xx/5xx 状态码原样透传给客户端，其它异常状态统一映射为 502。
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "backend_error"

    def __init__(self, backend_status: int, text: str, *, url: str | None = None) -> None:
        forwarded = backend_status if 400 <= backend_status <= 599 else status.HTTP_502_BAD_GATEWAY
        super().__init__(
            f"Backend error ({backend_status}): {text}" if text else f"Backend error ({backend_status})",
            status_code=forwarded,
            details={"backend_status": backend_status, "url": url},
        )
        self.backend_status = backend_status
        self.text = text


class BackendStreamError(GatewayError):
    """
    流内错误事件。仅用于标记类型，不会渲染给客户端：
    错误会被写入累积答案并通过 error chunk 输出。
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "backend_stream_error"


class TransportError(GatewayError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "transport_error"


__all__ = [
    "BackendHttpError",
    "BackendStreamError",
    "ConfigurationError",
    "ErrorResponse",
    "GatewayError",
    "RequestValidationError",
    "SigningError",
    "TransportError",
]
