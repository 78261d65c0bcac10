"""
Pydantic data models shared by the provider registry and the chat pipeline.
"""

from .chat import (
    AssistantMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    CompletionChoice,
    Usage,
)
from .provider import ApiStyle, AuthScheme, ProviderDescriptor, ResolvedModel

__all__ = [
    "ApiStyle",
    "AssistantMessage",
    "AuthScheme",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "CompletionChoice",
    "ProviderDescriptor",
    "ResolvedModel",
    "Usage",
]
