import logging

from chat_gateway.api.v1.chat.request_builder import build_backend_request
from chat_gateway.log_sanitizer import REDACTED, redact_url_query_key, sanitize_headers_for_log
from chat_gateway.schemas import ApiStyle, AuthScheme, ChatCompletionRequest, ResolvedModel
from chat_gateway.settings import Settings
from tests.utils import fake_signer, make_provider


def test_sanitize_headers_for_log_redacts_common_secrets():
    sanitized = sanitize_headers_for_log(
        {
            "x-api-key": "sk-test-123",
            "Authorization": "Bearer secret",
            "Cookie": "a=b",
            "User-Agent": "pytest",
        }
    )
    assert sanitized["x-api-key"] == REDACTED
    assert sanitized["Authorization"] == REDACTED
    assert sanitized["Cookie"] == REDACTED
    assert sanitized["User-Agent"] == "pytest"


def test_sanitize_headers_for_log_redacts_signed_scheme_headers():
    sanitized = sanitize_headers_for_log(
        {
            "nonce": "n-1",
            "timestamp": "1700000000",
            "sign": "abc",
            "device-id": "device-1",
            "sid": "session-1",
            "os-type": "3",
            "X-Session-Token": "t",
        }
    )
    assert sanitized == {
        "nonce": REDACTED,
        "timestamp": "1700000000",
        "sign": REDACTED,
        "device-id": REDACTED,
        "sid": REDACTED,
        "os-type": "3",
        "X-Session-Token": REDACTED,
    }


def test_redact_url_query_key():
    assert redact_url_query_key("https://g.test/m:stream?alt=sse&key=secret") == (
        f"https://g.test/m:stream?alt=sse&key={REDACTED}"
    )
    assert redact_url_query_key("https://g.test/m") == "https://g.test/m"


def test_request_builder_logs_do_not_leak_credentials(caplog):
    caplog.set_level(logging.DEBUG, logger="chat_gateway")
    cfg = Settings(DEV_DEVICE_ID="device-secret", DEV_SESSION_ID="sid-secret")
    provider = make_provider()
    resolved = ResolvedModel(
        provider=provider,
        requested_model="dev/x",
        generic_model="x",
        upstream_model="x",
    )
    request = ChatCompletionRequest(model="dev/x", messages=[{"role": "user", "content": "hi"}])
    backend_request = build_backend_request(request, resolved, signer=fake_signer, cfg=cfg)

    google = make_provider(
        id="google",
        base_url="https://g.test/v1beta",
        api_style=ApiStyle.GEMINI,
        auth_scheme=AuthScheme.QUERY_KEY,
        api_key="g-secret",  # pragma: allowlist secret
    )
    build_backend_request(
        request,
        ResolvedModel(provider=google, requested_model="google/m", generic_model="m", upstream_model="m"),
        cfg=cfg,
    )

    joined = "\n".join(record.getMessage() for record in caplog.records)
    assert backend_request.headers["sign"] not in joined
    assert "device-secret" not in joined
    assert "sid-secret" not in joined
    assert "g-secret" not in joined
    assert REDACTED in joined
