from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AuthScheme(str, Enum):
    """How requests to a provider are authenticated."""

    BEARER = "bearer"
    API_KEY_HEADER = "api-key-header"
    QUERY_KEY = "query-key"
    SIGNED = "signed-header"
    NONE = "none"


class ApiStyle(str, Enum):
    """
    Wire vocabulary spoken by the backend; selects both the request body
    shape and the stream translator.
    """

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    DEV = "dev"


class ProviderDescriptor(BaseModel):
    """
    Static, read-only description of one backend provider.
    Built once at startup and shared across requests.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Provider unique identifier (short slug)")
    name: str = Field(..., description="Human readable provider name")
    base_url: str = Field(
        ...,
        description="API base URL; for the signed provider this is the full endpoint URL",
    )
    api_style: ApiStyle = Field(..., description="Backend wire vocabulary")
    auth_scheme: AuthScheme = Field(..., description="Authentication scheme")
    api_key: str | None = Field(
        None, description="Credential for bearer/api-key-header/query-key schemes"
    )
    models: dict[str, str] = Field(
        default_factory=dict,
        description="Generic model name -> provider specific model identifier",
    )
    custom_headers: dict[str, str] | None = Field(
        None, description="Extra headers to send to this provider"
    )

    @property
    def requires_credential(self) -> bool:
        return self.auth_scheme in (
            AuthScheme.BEARER,
            AuthScheme.API_KEY_HEADER,
            AuthScheme.QUERY_KEY,
        )


class ResolvedModel(BaseModel):
    """Result of resolving a composite "provider/generic-name" model string."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderDescriptor
    requested_model: str = Field(..., description="Model string exactly as the client sent it")
    generic_model: str
    upstream_model: str


__all__ = ["ApiStyle", "AuthScheme", "ProviderDescriptor", "ResolvedModel"]
