"""
聊天路由（v1）

route 层只负责：解析请求体 → 解析模型 → 构建后端请求 → 打开流水线，
然后按客户端的 stream 标志返回 SSE 流或一次性 JSON。
所有前置错误都在返回 StreamingResponse 之前抛出。
"""

from __future__ import annotations

import json
from typing import Any

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask

from chat_gateway.deps import get_http_client, get_provider_registry, get_signer
from chat_gateway.errors import RequestValidationError
from chat_gateway.logging_config import logger
from chat_gateway.provider.config import ProviderRegistry
from chat_gateway.provider.signing import Signer
from chat_gateway.schemas import ChatCompletionRequest

from .chat.request_builder import build_backend_request
from .chat.stream_orchestrator import ChatCompletionPipeline

router = APIRouter(tags=["chat"])


async def _parse_chat_request(request: Request) -> ChatCompletionRequest:
    raw = await request.body()
    try:
        body: Any = json.loads(raw)
    except ValueError as exc:
        raise RequestValidationError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise RequestValidationError("Request body must be a JSON object")
    if not body.get("model"):
        raise RequestValidationError("Missing 'model' field in request body")

    try:
        return ChatCompletionRequest.model_validate(body)
    except ValidationError as exc:
        raise RequestValidationError(
            "Invalid chat completion request",
            details={"errors": json.loads(exc.json(include_url=False))},
        ) from exc


@router.post("/v1/chat/completions")
async def chat_completions(
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
    registry: ProviderRegistry = Depends(get_provider_registry),
    signer: Signer | None = Depends(get_signer),
):
    chat_request = await _parse_chat_request(request)
    logger.info(
        "chat: incoming model=%r stream=%r messages=%d",
        chat_request.model,
        chat_request.stream,
        len(chat_request.messages),
    )

    resolved = registry.resolve_model(chat_request.model)
    backend_request = build_backend_request(chat_request, resolved, signer=signer)
    pipeline = ChatCompletionPipeline(
        client,
        backend_request,
        api_style=resolved.provider.api_style,
        model=resolved.requested_model,
    )
    await pipeline.open()

    if chat_request.stream:
        return StreamingResponse(
            pipeline.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            background=BackgroundTask(pipeline.aclose),
        )
    return JSONResponse(content=await pipeline.aggregate())


@router.get("/v1/models")
async def list_models(registry: ProviderRegistry = Depends(get_provider_registry)):
    return {"object": "list", "data": registry.list_models()}


@router.get("/health")
async def health():
    return {"status": "ok"}


__all__ = ["router"]
