from __future__ import annotations

from chat_gateway.api.v1.chat.header_builder import build_upstream_headers
from chat_gateway.schemas import ApiStyle, AuthScheme
from chat_gateway.settings import Settings
from tests.utils import make_provider


def _cfg(**overrides) -> Settings:
    return Settings(**overrides)


def test_bearer_provider_stream_headers():
    provider = make_provider(
        id="openai", api_style=ApiStyle.OPENAI, auth_scheme=AuthScheme.BEARER, api_key="k"
    )
    headers = build_upstream_headers(provider, cfg=_cfg())
    assert headers["Accept"] == "text/event-stream"
    assert headers["Content-Type"] == "application/json"
    assert headers["Authorization"] == "Bearer k"
    assert "x-api-key" not in {k.lower() for k in headers}


def test_api_key_header_provider_uses_x_api_key_and_custom_headers():
    provider = make_provider(
        id="anthropic",
        api_style=ApiStyle.CLAUDE,
        auth_scheme=AuthScheme.API_KEY_HEADER,
        api_key="k",
        custom_headers={"anthropic-version": "2023-06-01"},
    )
    headers = build_upstream_headers(provider, cfg=_cfg())
    assert headers["x-api-key"] == "k"
    assert headers["anthropic-version"] == "2023-06-01"
    assert "Authorization" not in headers


def test_custom_auth_header_is_respected():
    provider = make_provider(
        id="openai",
        api_style=ApiStyle.OPENAI,
        auth_scheme=AuthScheme.BEARER,
        api_key="k",
        custom_headers={"api-key": "custom"},
    )
    headers = build_upstream_headers(provider, cfg=_cfg())
    lowered = {k.lower(): v for k, v in headers.items()}
    assert "authorization" not in lowered
    assert lowered["api-key"] == "custom"


def test_signed_provider_merges_signed_headers_only():
    headers = build_upstream_headers(
        make_provider(),
        signed_headers={"nonce": "n", "timestamp": "1", "sign": "s"},
        cfg=_cfg(),
    )
    assert headers["nonce"] == "n"
    assert headers["sign"] == "s"
    assert "Authorization" not in headers


def test_none_auth_provider_has_no_auth_headers():
    provider = make_provider(id="ollama", api_style=ApiStyle.OLLAMA, auth_scheme=AuthScheme.NONE)
    headers = build_upstream_headers(provider, cfg=_cfg())
    assert set(headers) == {"Accept", "Content-Type"}


def test_browser_mask_headers_applied_when_enabled():
    cfg = _cfg(MASK_AS_BROWSER=True, MASK_USER_AGENT="UA", MASK_ORIGIN="https://o.example")
    headers = build_upstream_headers(
        make_provider(id="ollama", api_style=ApiStyle.OLLAMA, auth_scheme=AuthScheme.NONE),
        cfg=cfg,
    )
    assert headers["User-Agent"] == "UA"
    assert headers["Origin"] == "https://o.example"
    assert "Referer" not in headers
