from __future__ import annotations

import json
from typing import Any, Callable

import httpx

from chat_gateway.deps import get_http_client, get_provider_registry, get_signer
from chat_gateway.provider.config import ProviderRegistry
from chat_gateway.schemas import ApiStyle, AuthScheme, ProviderDescriptor

SIGNED_ENDPOINT = "https://dev.example.com/api/chat"


def sse(*events: tuple[str | None, str]) -> bytes:
    """Encode (event, data) pairs as an SSE body; event None means no event line."""
    parts: list[str] = []
    for event, data in events:
        lines = []
        if event is not None:
            lines.append(f"event: {event}")
        for line in data.split("\n"):
            lines.append(f"data: {line}")
        parts.append("\n".join(lines) + "\n\n")
    return "".join(parts).encode("utf-8")


def decode_sse_payloads(body: bytes | str) -> list[Any]:
    """Split a canonical SSE body into JSON payloads; the sentinel becomes "[DONE]"."""
    text = body.decode("utf-8") if isinstance(body, bytes) else body
    payloads: list[Any] = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if not frame:
            continue
        assert frame.startswith("data: "), frame
        data = frame[len("data: ") :]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


def fake_signer(nonce: str, timestamp: str, device_id: str, content: str) -> str:
    return f"sig:{nonce}:{timestamp}:{device_id}:{content}"


def make_provider(**overrides: Any) -> ProviderDescriptor:
    data: dict[str, Any] = {
        "id": "dev",
        "name": "Dev",
        "base_url": SIGNED_ENDPOINT,
        "api_style": ApiStyle.DEV,
        "auth_scheme": AuthScheme.SIGNED,
        "models": {"dev-claude-3-7-sonnet": "us.anthropic.claude-3-7-sonnet-20250219-v1:0-thinking"},
    }
    data.update(overrides)
    return ProviderDescriptor(**data)


def build_test_registry() -> ProviderRegistry:
    return ProviderRegistry(
        [
            make_provider(),
            make_provider(
                id="openai",
                name="OpenAI",
                base_url="https://api.openai.test/v1",
                api_style=ApiStyle.OPENAI,
                auth_scheme=AuthScheme.BEARER,
                api_key="sk-test",  # pragma: allowlist secret
                models={"gpt-4": "gpt-4"},
            ),
        ],
        default_provider="dev",
    )


def install_mock_backend(
    app,
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    signer: Callable[[str, str, str, str], str] | None = fake_signer,
    registry: ProviderRegistry | None = None,
) -> None:
    """Route all upstream calls of ``app`` through an httpx.MockTransport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    registry = registry or build_test_registry()

    async def override_get_http_client():
        return client

    app.dependency_overrides[get_http_client] = override_get_http_client
    app.dependency_overrides[get_provider_registry] = lambda: registry
    app.dependency_overrides[get_signer] = lambda: signer
