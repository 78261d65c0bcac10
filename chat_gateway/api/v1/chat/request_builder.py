"""
后端请求构建

把规范化的 ChatCompletionRequest 翻译成具体 provider 的 url/headers/body：
- 不论客户端是否要求流式，后端调用一律开启流式，客户端的返回模式由编排层决定；
- 签名 provider：每次调用生成新的 nonce 与秒级时间戳，调用签名函数得到 sign，
  并把这些值连同 device-id/os-type/sid 放进请求头。
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import quote

from chat_gateway.errors import ConfigurationError
from chat_gateway.log_sanitizer import redact_url_query_key, sanitize_headers_for_log
from chat_gateway.logging_config import logger
from chat_gateway.provider.signing import Signer, sign_request
from chat_gateway.schemas import ApiStyle, AuthScheme, ChatCompletionRequest, ResolvedModel
from chat_gateway.settings import Settings, settings

from .header_builder import build_upstream_headers

CLAUDE_DEFAULT_MAX_TOKENS = 4096

# 签名 provider 请求体中 extra 字段的默认值；请求里同名参数可以覆盖
DEV_EXTRA_DEFAULTS: dict[str, Any] = {
    "searchMode": "web",
    "isExpert": False,
    "pluginAction": None,
    "language": "en",
    "programmingLanguage": None,
}


@dataclass(frozen=True)
class SignedRequestEnvelope:
    """一次后端调用的签名材料；nonce 每次调用唯一，不可复用。"""

    nonce: str
    timestamp: str
    signature: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BackendRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    envelope: SignedRequestEnvelope | None = None


def extract_content_to_sign(request: ChatCompletionRequest) -> str:
    """
    取最后一条 user 消息作为签名内容；找不到时退化为空字符串并记录警告。
    """
    content = request.last_user_content()
    if content is None:
        logger.warning(
            "build_backend_request: no user message found in %d messages; signing empty content",
            len(request.messages),
        )
        return ""
    return content


def _join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _require_credential(resolved: ResolvedModel) -> str:
    provider = resolved.provider
    if not provider.api_key:
        raise ConfigurationError(
            f"API key for provider '{provider.id}' is not configured",
            details={"provider": provider.id},
        )
    return provider.api_key


def _openai_body(request: ChatCompletionRequest, upstream_model: str) -> dict[str, Any]:
    payload = request.model_dump(exclude={"model", "stream"}, exclude_none=True)
    payload["model"] = upstream_model
    payload["stream"] = True
    payload.setdefault("stream_options", {"include_usage": True})
    return payload


def _claude_body(request: ChatCompletionRequest, upstream_model: str) -> dict[str, Any]:
    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []
    for message in request.messages:
        if message.role == "system":
            system_parts.append(message.text())
            continue
        messages.append({"role": message.role, "content": message.text()})

    payload: dict[str, Any] = {
        "model": upstream_model,
        "messages": messages,
        "max_tokens": request.max_tokens or CLAUDE_DEFAULT_MAX_TOKENS,
        "stream": True,
    }
    if system_parts:
        payload["system"] = "\n".join(system_parts)
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.top_p is not None:
        payload["top_p"] = request.top_p
    return payload


def _gemini_body(request: ChatCompletionRequest) -> dict[str, Any]:
    system_parts: list[dict[str, str]] = []
    contents: list[dict[str, Any]] = []
    for message in request.messages:
        if message.role == "system":
            system_parts.append({"text": message.text()})
            continue
        role = "model" if message.role == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": message.text()}]})

    payload: dict[str, Any] = {"contents": contents}
    if system_parts:
        payload["systemInstruction"] = {"parts": system_parts}

    generation_config: dict[str, Any] = {}
    if request.temperature is not None:
        generation_config["temperature"] = request.temperature
    if request.top_p is not None:
        generation_config["topP"] = request.top_p
    if request.max_tokens is not None:
        generation_config["maxOutputTokens"] = request.max_tokens
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


def _ollama_body(request: ChatCompletionRequest, upstream_model: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": upstream_model,
        "messages": [{"role": m.role, "content": m.text()} for m in request.messages],
        "stream": True,
    }
    options: dict[str, Any] = {}
    if request.temperature is not None:
        options["temperature"] = request.temperature
    if request.top_p is not None:
        options["top_p"] = request.top_p
    if options:
        payload["options"] = options
    return payload


def _dev_body(
    request: ChatCompletionRequest, upstream_model: str, content: str, cfg: Settings
) -> dict[str, Any]:
    params = request.generation_params()
    extra: dict[str, Any] = {
        "searchMode": params.get("searchMode", DEV_EXTRA_DEFAULTS["searchMode"]),
        "model": upstream_model,
        "isExpert": params.get("isExpert", DEV_EXTRA_DEFAULTS["isExpert"]),
        "pluginFor": cfg.dev_plugin_for,
        "pluginAction": params.get("pluginAction", DEV_EXTRA_DEFAULTS["pluginAction"]),
        "language": params.get("language", DEV_EXTRA_DEFAULTS["language"]),
        "programmingLanguage": params.get(
            "programmingLanguage", DEV_EXTRA_DEFAULTS["programmingLanguage"]
        ),
    }
    return {
        "content": content,
        "threadId": params.get("threadId"),
        "extra": extra,
    }


def _build_signed_request(
    request: ChatCompletionRequest,
    resolved: ResolvedModel,
    *,
    signer: Signer | None,
    cfg: Settings,
    nonce_factory: Callable[[], str],
    clock: Callable[[], float],
) -> BackendRequest:
    provider = resolved.provider
    if signer is None:
        raise ConfigurationError(
            f"Provider '{provider.id}' requires signed requests but no SIGNER is configured",
            details={"provider": provider.id},
        )

    content = extract_content_to_sign(request)
    nonce = nonce_factory()
    timestamp = str(int(clock()))
    signature = sign_request(
        signer,
        nonce=nonce,
        timestamp=timestamp,
        device_id=cfg.dev_device_id,
        content=content,
    )

    signed_headers = {
        "nonce": nonce,
        "timestamp": timestamp,
        "sign": signature,
        "device-id": cfg.dev_device_id,
        "os-type": cfg.dev_os_type,
    }
    if cfg.dev_session_id:
        signed_headers["sid"] = cfg.dev_session_id

    headers = build_upstream_headers(provider, signed_headers=signed_headers, cfg=cfg)
    body = _dev_body(request, resolved.upstream_model, content, cfg)
    envelope = SignedRequestEnvelope(
        nonce=nonce,
        timestamp=timestamp,
        signature=signature,
        headers=headers,
        body=body,
    )
    return BackendRequest(url=provider.base_url, headers=headers, body=body, envelope=envelope)


def build_backend_request(
    request: ChatCompletionRequest,
    resolved: ResolvedModel,
    *,
    signer: Signer | None = None,
    cfg: Settings | None = None,
    nonce_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    clock: Callable[[], float] = time.time,
) -> BackendRequest:
    """
    Build the outbound url/headers/body for one backend call.

    Raises ConfigurationError when the provider lacks a credential or signer,
    and SigningError when the signing oracle fails.
    """
    cfg = cfg or settings
    provider = resolved.provider
    upstream_model = resolved.upstream_model
    style = provider.api_style

    if provider.auth_scheme is AuthScheme.SIGNED:
        backend_request = _build_signed_request(
            request,
            resolved,
            signer=signer,
            cfg=cfg,
            nonce_factory=nonce_factory,
            clock=clock,
        )
    else:
        if provider.requires_credential:
            _require_credential(resolved)
        headers = build_upstream_headers(provider, cfg=cfg)

        if style is ApiStyle.CLAUDE:
            url = _join_url(provider.base_url, "/messages")
            body = _claude_body(request, upstream_model)
        elif style is ApiStyle.GEMINI:
            url = _join_url(
                provider.base_url,
                f"/models/{quote(upstream_model, safe='.-_')}:streamGenerateContent?alt=sse",
            )
            body = _gemini_body(request)
        elif style is ApiStyle.OLLAMA:
            url = _join_url(provider.base_url, "/chat")
            body = _ollama_body(request, upstream_model)
        elif style is ApiStyle.OPENAI:
            url = _join_url(provider.base_url, "/chat/completions")
            body = _openai_body(request, upstream_model)
        else:
            raise ConfigurationError(
                f"Provider '{provider.id}' with api_style={style.value} requires signed auth",
                details={"provider": provider.id},
            )

        if provider.auth_scheme is AuthScheme.QUERY_KEY:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}key={quote(provider.api_key or '', safe='')}"
        backend_request = BackendRequest(url=url, headers=headers, body=body)

    logger.info(
        "build_backend_request: provider=%s style=%s model=%s url=%s",
        provider.id,
        style.value,
        upstream_model,
        redact_url_query_key(backend_request.url),
    )
    logger.debug(
        "build_backend_request: headers=%s",
        sanitize_headers_for_log(backend_request.headers),
    )
    return backend_request


__all__ = [
    "BackendRequest",
    "CLAUDE_DEFAULT_MAX_TOKENS",
    "DEV_EXTRA_DEFAULTS",
    "SignedRequestEnvelope",
    "build_backend_request",
    "extract_content_to_sign",
]
