"""
Provider registry.

Providers are described statically and built once at startup from
``settings``; credentials and endpoints come from environment variables:

    OPENAI_API_KEY=...
    ANTHROPIC_API_KEY=...
    GOOGLE_API_KEY=...
    OLLAMA_BASE_URL=http://localhost:11434/api
    INTERNAL_DEV_API_ENDPOINT=https://internal.example.com/api/chat

Clients address a model with a composite "provider/generic-name" string,
e.g. ``openai/gpt-4`` or ``dev/dev-claude-3-7-sonnet``. A generic name that
is not in the provider's model map is forwarded unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType
from typing import Any

from chat_gateway.errors import ConfigurationError
from chat_gateway.logging_config import logger
from chat_gateway.schemas import ApiStyle, AuthScheme, ProviderDescriptor, ResolvedModel
from chat_gateway.settings import Settings, settings

# Timestamp advertised as "created" for every entry in GET /v1/models.
MODELS_CREATED_AT = 1_700_000_000

_OPENAI_MODELS = {
    "gpt-4-turbo": "gpt-4-turbo-preview",
    "gpt-4-vision": "gpt-4-vision-preview",
    "gpt-4": "gpt-4",
    "gpt-3.5-turbo": "gpt-3.5-turbo",
}
_ANTHROPIC_MODELS = {
    "claude-3-opus": "claude-3-opus-20240229",
    "claude-3-sonnet": "claude-3-sonnet-20240229",
    "claude-3-haiku": "claude-3-haiku-20240307",
    "claude-2.1": "claude-2.1",
}
_GOOGLE_MODELS = {
    "gemini-1.5-pro": "gemini-1.5-pro-latest",
    "gemini-1.0-pro": "gemini-pro",
}
_OLLAMA_MODELS = {
    "llama3": "llama3",
    "mistral": "mistral",
    "codellama": "codellama",
}
_DEV_MODELS = {
    "dev-claude-3-7-sonnet": "us.anthropic.claude-3-7-sonnet-20250219-v1:0-thinking",
    "dev-gemini-1.5-pro": "gemini-1.5-pro-002",
}


def build_builtin_providers(cfg: Settings) -> list[ProviderDescriptor]:
    return [
        ProviderDescriptor(
            id="openai",
            name="OpenAI",
            base_url=cfg.openai_base_url,
            api_style=ApiStyle.OPENAI,
            auth_scheme=AuthScheme.BEARER,
            api_key=cfg.openai_api_key,
            models=_OPENAI_MODELS,
        ),
        ProviderDescriptor(
            id="anthropic",
            name="Anthropic",
            base_url=cfg.anthropic_base_url,
            api_style=ApiStyle.CLAUDE,
            auth_scheme=AuthScheme.API_KEY_HEADER,
            api_key=cfg.anthropic_api_key,
            models=_ANTHROPIC_MODELS,
            custom_headers={"anthropic-version": "2023-06-01"},
        ),
        ProviderDescriptor(
            id="google",
            name="Google Gemini",
            base_url=cfg.google_base_url,
            api_style=ApiStyle.GEMINI,
            auth_scheme=AuthScheme.QUERY_KEY,
            api_key=cfg.google_api_key,
            models=_GOOGLE_MODELS,
        ),
        ProviderDescriptor(
            id="ollama",
            name="Ollama (Local)",
            base_url=cfg.ollama_base_url,
            api_style=ApiStyle.OLLAMA,
            auth_scheme=AuthScheme.NONE,
            models=_OLLAMA_MODELS,
        ),
        ProviderDescriptor(
            id="dev",
            name="Dev",
            base_url=cfg.dev_api_endpoint,
            api_style=ApiStyle.DEV,
            auth_scheme=AuthScheme.SIGNED,
            models=_DEV_MODELS,
        ),
    ]


class ProviderRegistry:
    """
    Read-only mapping of provider id -> ProviderDescriptor.
    """

    def __init__(
        self, providers: Iterable[ProviderDescriptor], *, default_provider: str | None = None
    ) -> None:
        by_id: dict[str, ProviderDescriptor] = {}
        for provider in providers:
            if provider.id in by_id:
                raise ConfigurationError(f"Duplicate provider id: {provider.id}")
            by_id[provider.id] = provider
        self._providers = MappingProxyType(by_id)
        self.default_provider = default_provider

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def providers(self) -> list[ProviderDescriptor]:
        return list(self._providers.values())

    def get(self, provider_id: str) -> ProviderDescriptor:
        provider = self._providers.get(provider_id)
        if provider is None:
            logger.warning("Provider configuration not found for provider id %r", provider_id)
            raise ConfigurationError(
                f"Provider configuration not found for model provider '{provider_id}'",
                details={"provider": provider_id},
            )
        return provider

    def resolve_model(self, model: str) -> ResolvedModel:
        """
        Resolve "provider/generic-name" into a provider descriptor and the
        provider specific model identifier.
        """
        provider_id, sep, generic = model.partition("/")
        if not sep:
            if not self.default_provider:
                raise ConfigurationError(
                    f"Invalid model name format: '{model}'. Expected 'provider/model'",
                    details={"model": model},
                )
            provider_id, generic = self.default_provider, model
        if not provider_id or not generic:
            raise ConfigurationError(
                f"Invalid model name format: '{model}'. Expected 'provider/model'",
                details={"model": model},
            )

        provider = self.get(provider_id)
        upstream = provider.models.get(generic, generic)
        return ResolvedModel(
            provider=provider,
            requested_model=model,
            generic_model=generic,
            upstream_model=upstream,
        )

    def list_models(self) -> list[dict[str, Any]]:
        """Entries for GET /v1/models, in registry order."""
        items: list[dict[str, Any]] = []
        for provider in self._providers.values():
            for generic in provider.models:
                items.append(
                    {
                        "id": f"{provider.id}/{generic}",
                        "object": "model",
                        "created": MODELS_CREATED_AT,
                        "owned_by": provider.id,
                    }
                )
        return items


def load_provider_registry(cfg: Settings | None = None) -> ProviderRegistry:
    cfg = cfg or settings
    providers = build_builtin_providers(cfg)
    if cfg.default_provider and cfg.default_provider not in {p.id for p in providers}:
        raise ConfigurationError(
            f"DEFAULT_PROVIDER '{cfg.default_provider}' is not a configured provider"
        )
    registry = ProviderRegistry(providers, default_provider=cfg.default_provider)
    logger.info(
        "Loaded %d providers: %s (default=%s)",
        len(registry),
        ", ".join(p.id for p in registry.providers),
        cfg.default_provider,
    )
    return registry


__all__ = [
    "MODELS_CREATED_AT",
    "ProviderRegistry",
    "build_builtin_providers",
    "load_provider_registry",
]
