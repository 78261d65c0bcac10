from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = Field(..., description="system / user / assistant / tool")
    # OpenAI 多模态格式下 content 也可能是 [{type: "text", text: "..."}] 列表
    content: str | list[dict[str, Any]] | None = None

    def text(self) -> str:
        """Plain-text view of the message content."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts: list[str] = []
        for item in self.content:
            if isinstance(item, dict) and item.get("type") == "text":
                value = item.get("text")
                if isinstance(value, str):
                    parts.append(value)
        return "".join(parts)


class ChatCompletionRequest(BaseModel):
    """
    Canonical inbound chat completion request.

    Unknown generation parameters (temperature, top_p, searchMode, threadId ...)
    are kept as extra fields and forwarded to the backend where supported.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    model: str = Field(..., min_length=1, description='Composite "provider/generic-name" model id')
    messages: list[ChatMessage] = Field(..., min_length=1)
    stream: bool = False
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("model must not be blank")
        return value

    def last_user_content(self) -> str | None:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.text()
        return None

    def generation_params(self) -> dict[str, Any]:
        """Everything except model/messages/stream, with unset values dropped."""
        data = self.model_dump(exclude={"model", "messages", "stream"}, exclude_none=True)
        return data


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str
    reasoning_content: str | None = None


class CompletionChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str


class ChatCompletionResponse(BaseModel):
    """Canonical aggregate (non-streaming) response object."""

    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[CompletionChoice]
    usage: Usage
    sources: list[Any] | None = None
    error: dict[str, Any] | None = None
    # conversation metadata reported by the signed backend; omitted when absent
    thread_id: str | None = None
    thread_title: str | None = None
    query_message_id: str | None = None
    answer_message_id: str | None = None
    repo_sources: list[Any] | None = None
    related_questions: list[dict[str, str]] | None = None
    actions: list[dict[str, Any]] | None = None


__all__ = [
    "AssistantMessage",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "CompletionChoice",
    "Usage",
]
