import pytest

from chat_gateway.errors import ConfigurationError
from chat_gateway.provider.config import (
    MODELS_CREATED_AT,
    ProviderRegistry,
    build_builtin_providers,
    load_provider_registry,
)
from chat_gateway.schemas import ApiStyle, AuthScheme
from chat_gateway.settings import Settings
from tests.utils import make_provider


def _cfg(**overrides) -> Settings:
    base = {
        "OPENAI_API_KEY": "sk-openai",  # pragma: allowlist secret
        "INTERNAL_DEV_API_ENDPOINT": "https://dev.example.com/api/chat",
        "OLLAMA_BASE_URL": "http://ollama.local:11434/api",
    }
    base.update(overrides)
    return Settings(**base)


def test_builtin_providers_follow_settings():
    providers = {p.id: p for p in build_builtin_providers(_cfg())}

    assert list(providers) == ["openai", "anthropic", "google", "ollama", "dev"]
    assert providers["openai"].auth_scheme is AuthScheme.BEARER
    assert providers["openai"].api_key == "sk-openai"  # pragma: allowlist secret
    assert providers["anthropic"].api_style is ApiStyle.CLAUDE
    assert providers["anthropic"].custom_headers == {"anthropic-version": "2023-06-01"}
    assert providers["google"].auth_scheme is AuthScheme.QUERY_KEY
    assert providers["ollama"].base_url == "http://ollama.local:11434/api"
    assert providers["ollama"].auth_scheme is AuthScheme.NONE
    assert providers["dev"].auth_scheme is AuthScheme.SIGNED
    assert providers["dev"].base_url == "https://dev.example.com/api/chat"


def test_resolve_model_maps_generic_name_to_upstream_id():
    registry = load_provider_registry(_cfg())

    resolved = registry.resolve_model("dev/dev-claude-3-7-sonnet")
    assert resolved.provider.id == "dev"
    assert resolved.requested_model == "dev/dev-claude-3-7-sonnet"
    assert resolved.generic_model == "dev-claude-3-7-sonnet"
    assert resolved.upstream_model == "us.anthropic.claude-3-7-sonnet-20250219-v1:0-thinking"


def test_resolve_model_passes_unmapped_name_through():
    registry = load_provider_registry(_cfg())
    resolved = registry.resolve_model("openai/gpt-4o-mini")
    assert resolved.upstream_model == "gpt-4o-mini"


def test_resolve_model_keeps_slashes_in_generic_name():
    registry = load_provider_registry(_cfg())
    resolved = registry.resolve_model("ollama/library/llama3")
    assert resolved.provider.id == "ollama"
    assert resolved.generic_model == "library/llama3"


def test_resolve_model_without_prefix_uses_default_provider():
    registry = load_provider_registry(_cfg(DEFAULT_PROVIDER="openai"))
    resolved = registry.resolve_model("gpt-4")
    assert resolved.provider.id == "openai"
    assert resolved.upstream_model == "gpt-4"


def test_resolve_model_without_prefix_and_default_is_rejected():
    registry = ProviderRegistry([make_provider()])
    with pytest.raises(ConfigurationError):
        registry.resolve_model("gpt-4")


@pytest.mark.parametrize("model", ["/gpt-4", "dev/"])
def test_resolve_model_rejects_empty_parts(model):
    registry = load_provider_registry(_cfg())
    with pytest.raises(ConfigurationError):
        registry.resolve_model(model)


def test_unknown_provider_is_configuration_error():
    registry = load_provider_registry(_cfg())
    with pytest.raises(ConfigurationError) as exc_info:
        registry.resolve_model("mistral/large")
    assert exc_info.value.details == {"provider": "mistral"}
    assert exc_info.value.status_code == 500


def test_duplicate_provider_ids_are_rejected():
    with pytest.raises(ConfigurationError):
        ProviderRegistry([make_provider(), make_provider()])


def test_unknown_default_provider_is_rejected():
    with pytest.raises(ConfigurationError):
        load_provider_registry(_cfg(DEFAULT_PROVIDER="missing"))


def test_list_models_uses_composite_ids_in_registry_order():
    registry = ProviderRegistry(
        [
            make_provider(models={"a": "upstream-a", "b": "upstream-b"}),
            make_provider(id="ollama", name="Ollama", models={"llama3": "llama3"}),
        ]
    )
    assert registry.list_models() == [
        {"id": "dev/a", "object": "model", "created": MODELS_CREATED_AT, "owned_by": "dev"},
        {"id": "dev/b", "object": "model", "created": MODELS_CREATED_AT, "owned_by": "dev"},
        {"id": "ollama/llama3", "object": "model", "created": MODELS_CREATED_AT, "owned_by": "ollama"},
    ]


def test_registry_is_read_only():
    registry = load_provider_registry(_cfg())
    assert "dev" in registry
    with pytest.raises(TypeError):
        registry._providers["x"] = make_provider(id="x")  # type: ignore[index]
