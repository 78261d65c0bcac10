"""
OpenAI chat.completions 风格的输出编码

- 流式：每个 OutputChunk 编码为 `data: <json>\\n\\n`，最后以 `data: [DONE]\\n\\n` 结束；
- 非流式：把 AccumulatedAnswer 一次性组装为 chat.completion 对象。

同一请求的所有 chunk 共享 id / created / model。
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from chat_gateway.schemas import (
    AssistantMessage,
    ChatCompletionResponse,
    CompletionChoice,
    Usage,
)

from .accumulator import AccumulatedAnswer

DONE_SENTINEL = b"data: [DONE]\n\n"

_OPTIONAL_AGGREGATE_FIELDS = (
    "sources",
    "error",
    "thread_id",
    "thread_title",
    "query_message_id",
    "answer_message_id",
    "repo_sources",
    "related_questions",
    "actions",
)


class ChunkKind(str, Enum):
    ROLE_INIT = "role-init"
    DELTA = "delta"
    FUNCTION_PAYLOAD = "function-like-payload"
    ERROR = "error"
    FINISH = "finish"


@dataclass(frozen=True)
class OutputChunk:
    kind: ChunkKind
    content: str | None = None
    name: str | None = None
    arguments: dict[str, Any] | None = None
    message: str | None = None
    finish_reason: str | None = None


def new_response_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def encode_openai_sse_event(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def resolve_finish_reason(answer: AccumulatedAnswer) -> str:
    if answer.error is not None:
        return "error"
    return answer.finish_reason or "stop"


class ChunkEmitter:
    def __init__(
        self,
        model: str,
        *,
        request_id: str | None = None,
        created: int | None = None,
    ) -> None:
        self.model = model
        self.request_id = request_id or new_response_id()
        self.created = int(time.time()) if created is None else created

    # chunk constructors -------------------------------------------------

    @staticmethod
    def role_init() -> OutputChunk:
        return OutputChunk(kind=ChunkKind.ROLE_INIT)

    @staticmethod
    def delta(content: str) -> OutputChunk:
        return OutputChunk(kind=ChunkKind.DELTA, content=content)

    @staticmethod
    def function_payload(name: str, arguments: dict[str, Any]) -> OutputChunk:
        return OutputChunk(kind=ChunkKind.FUNCTION_PAYLOAD, name=name, arguments=arguments)

    @staticmethod
    def error(message: str) -> OutputChunk:
        return OutputChunk(kind=ChunkKind.ERROR, message=message)

    @staticmethod
    def finish(reason: str) -> OutputChunk:
        return OutputChunk(kind=ChunkKind.FINISH, finish_reason=reason)

    # wire shapes --------------------------------------------------------

    def to_payload(self, chunk: OutputChunk) -> dict[str, Any]:
        delta: dict[str, Any] = {}
        finish_reason: str | None = None
        extra: dict[str, Any] = {}

        if chunk.kind is ChunkKind.ROLE_INIT:
            delta = {"role": "assistant"}
        elif chunk.kind is ChunkKind.DELTA:
            delta = {"content": chunk.content or ""}
        elif chunk.kind is ChunkKind.FUNCTION_PAYLOAD:
            delta = {
                "function_call": {
                    "name": chunk.name,
                    "arguments": json.dumps(chunk.arguments or {}, ensure_ascii=False),
                }
            }
        elif chunk.kind is ChunkKind.ERROR:
            extra["error"] = {
                "message": chunk.message,
                "type": "upstream_error",
                "code": "stream_error",
            }
        elif chunk.kind is ChunkKind.FINISH:
            finish_reason = chunk.finish_reason or "stop"

        payload: dict[str, Any] = {
            "id": self.request_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
        payload.update(extra)
        return payload

    def encode(self, chunk: OutputChunk) -> bytes:
        return encode_openai_sse_event(self.to_payload(chunk))

    def aggregate(self, answer: AccumulatedAnswer) -> dict[str, Any]:
        usage = answer.usage
        response = ChatCompletionResponse(
            id=self.request_id,
            created=self.created,
            model=self.model,
            choices=[
                CompletionChoice(
                    index=0,
                    message=AssistantMessage(
                        content=answer.text,
                        reasoning_content=answer.reasoning or None,
                    ),
                    finish_reason=resolve_finish_reason(answer),
                )
            ],
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            sources=answer.sources or None,
            error=(
                {"message": answer.error, "type": "upstream_error", "code": "stream_error"}
                if answer.error is not None
                else None
            ),
            thread_id=answer.thread_id,
            thread_title=answer.thread_title,
            query_message_id=answer.query_message_id,
            answer_message_id=answer.answer_message_id,
            repo_sources=answer.repo_sources or None,
            related_questions=[
                {"id": q.id, "title": q.title} for q in answer.related_questions
            ]
            or None,
            actions=answer.actions or None,
        )
        payload = response.model_dump()
        if payload["choices"][0]["message"]["reasoning_content"] is None:
            del payload["choices"][0]["message"]["reasoning_content"]
        for key in _OPTIONAL_AGGREGATE_FIELDS:
            if payload[key] is None:
                del payload[key]
        return payload


__all__ = [
    "ChunkEmitter",
    "ChunkKind",
    "DONE_SENTINEL",
    "OutputChunk",
    "encode_openai_sse_event",
    "new_response_id",
    "resolve_finish_reason",
]
