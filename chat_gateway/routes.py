import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.v1.chat_routes import router as chat_router
from .deps import build_http_client
from .errors import GatewayError
from .logging_config import logger
from .provider.config import load_provider_registry
from .provider.signing import load_signer
from .settings import settings


async def handle_gateway_error(request: Request, exc: GatewayError):
    """
    网关已知错误：按错误类型返回对应状态码与 ErrorResponse。
    """
    logger.warning(
        "Request failed %s %s: %s (%s, status=%s)",
        request.method,
        request.url.path,
        exc.message,
        exc.error_type,
        exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(),
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    全局异常处理器，统一返回结构化错误响应并打印日志。
    """

    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "服务器内部错误，请稍后再试",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理：
    - startup: 构建只读的 provider 注册表、装载签名函数、创建共享 HTTP 客户端
    - shutdown: 关闭 HTTP 客户端
    """
    app.state.provider_registry = load_provider_registry(settings)
    app.state.signer = load_signer(settings.signer)
    app.state.http_client = build_http_client()
    try:
        yield
    finally:
        await app.state.http_client.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Chat Gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(GatewayError, handle_gateway_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(chat_router)
    return app


__all__ = ["create_app"]
