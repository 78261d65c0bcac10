"""
上游请求 Header 构建器

目标：
- 按 provider 的鉴权方式（bearer / x-api-key / query-key / 签名头 / 无鉴权）生成请求头；
- 后端调用一律走流式，因此固定使用 `Accept: text/event-stream`。
"""

from __future__ import annotations

from collections.abc import Mapping

from chat_gateway.schemas import AuthScheme, ProviderDescriptor
from chat_gateway.settings import Settings, settings


def _has_custom_auth_header(custom_headers: Mapping[str, str] | None) -> bool:
    if not custom_headers:
        return False
    lowered = {str(k).strip().lower() for k in custom_headers.keys()}
    return bool(lowered & {"authorization", "x-api-key", "api-key"})


def build_upstream_headers(
    provider: ProviderDescriptor,
    *,
    signed_headers: Mapping[str, str] | None = None,
    cfg: Settings | None = None,
) -> dict[str, str]:
    """
    构建访问上游 Provider 的请求头。

    约定：
    - BEARER：`Authorization: Bearer <key>`
    - API_KEY_HEADER：`x-api-key: <key>`（Anthropic 的 anthropic-version 由 custom_headers 提供）
    - QUERY_KEY / NONE：不加鉴权头（query-key 的 key 拼在 URL 上）
    - SIGNED：合并调用方算好的签名头（nonce/timestamp/sign/device-id/os-type/sid）
    - 允许 provider.custom_headers 覆盖默认值
    """
    cfg = cfg or settings
    headers: dict[str, str] = {
        "Accept": "text/event-stream",
        "Content-Type": "application/json",
    }

    scheme = provider.auth_scheme
    # 若显式配置了 Authorization/x-api-key/api-key，则尊重配置，避免同时带多种鉴权头。
    if not _has_custom_auth_header(provider.custom_headers) and provider.api_key:
        if scheme is AuthScheme.BEARER:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        elif scheme is AuthScheme.API_KEY_HEADER:
            headers["x-api-key"] = provider.api_key

    if scheme is AuthScheme.SIGNED and signed_headers:
        headers.update(signed_headers)

    if cfg.mask_as_browser:
        headers["User-Agent"] = cfg.mask_user_agent
        if cfg.mask_origin:
            headers["Origin"] = cfg.mask_origin
        if cfg.mask_referer:
            headers["Referer"] = cfg.mask_referer

    if provider.custom_headers:
        headers.update(provider.custom_headers)

    return headers


__all__ = ["build_upstream_headers"]
