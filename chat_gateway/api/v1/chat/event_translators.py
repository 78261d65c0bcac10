"""
后端事件词汇 → 规范事件词汇

不同后端（签名内部后端 / OpenAI / Claude / Gemini / Ollama）的流式事件格式各不相同。
这里把每种格式翻译成归一化器认识的 RawEvent（content / r / usage / finish_reason /
error / done ...），之后所有后端共用同一个 EventNormalizer 与 ChunkEmitter。

翻译器按请求创建，可以持有少量跨事件状态（例如 Claude 的 input_tokens）。
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from chat_gateway.logging_config import logger
from chat_gateway.schemas import ApiStyle

from .accumulator import EventType
from .sse_parser import DEFAULT_EVENT_TYPE, RawEvent, iter_ndjson_events, iter_sse_events

_MESSAGE_TEXT_KEYS = ("result", "answer", "text", "content")

_CLAUDE_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}

_GEMINI_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}


def _event(kind: EventType, data: str = "") -> RawEvent:
    return RawEvent(type=kind.value, data=data)


def _usage_event(prompt_tokens: int, completion_tokens: int, total_tokens: int | None = None) -> RawEvent:
    payload = {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": total_tokens if total_tokens is not None else prompt_tokens + completion_tokens,
    }
    return _event(EventType.USAGE, json.dumps(payload))


def _load_json(raw: RawEvent, style: str) -> Any:
    try:
        return json.loads(raw.data)
    except (TypeError, ValueError):
        logger.warning("%s translator: skip non-JSON event %r: %.200s", style, raw.type, raw.data)
        return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any, default: int | None = 0) -> int | None:
    """Token counters from upstream JSON; anything non-numeric becomes ``default``."""
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _error_text(err: Any, default: str) -> str:
    if isinstance(err, dict):
        message = err.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
        return json.dumps(err, ensure_ascii=False)
    if isinstance(err, str) and err.strip():
        return err.strip()
    return default


class EventTranslator:
    """Identity translation; subclasses override ``translate``."""

    style: ApiStyle = ApiStyle.DEV

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        return [raw]


class DevEventTranslator(EventTranslator):
    """
    签名内部后端：事件名已是规范词汇，原样透传。
    唯一例外是未命名的 message 事件：若 data 为包含 result/answer/text/content
    字段的 JSON 对象，则取出该字段作为正文。
    """

    style = ApiStyle.DEV

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        if raw.type != DEFAULT_EVENT_TYPE:
            return [raw]
        stripped = raw.data.strip()
        if stripped.startswith("{"):
            try:
                payload = json.loads(stripped)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                for key in _MESSAGE_TEXT_KEYS:
                    value = payload.get(key)
                    if isinstance(value, str):
                        return [_event(EventType.CONTENT, value)]
        return [_event(EventType.CONTENT, raw.data)]


class OpenAIEventTranslator(EventTranslator):
    style = ApiStyle.OPENAI

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        if raw.data.strip() == "[DONE]":
            return [_event(EventType.DONE)]
        data = _load_json(raw, self.style.value)
        if not isinstance(data, dict):
            return []

        if "error" in data:
            return [_event(EventType.ERROR, _error_text(data["error"], "Upstream streaming error"))]

        events: list[RawEvent] = []
        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice = choices[0]
            delta = choice.get("delta") or {}
            if isinstance(delta, dict):
                reasoning = delta.get("reasoning_content")
                if isinstance(reasoning, str) and reasoning:
                    events.append(_event(EventType.REASONING, reasoning))
                content = delta.get("content")
                if isinstance(content, str) and content:
                    events.append(_event(EventType.CONTENT, content))
            finish_reason = choice.get("finish_reason")
            if isinstance(finish_reason, str) and finish_reason:
                events.append(_event(EventType.FINISH_REASON, finish_reason))

        usage = data.get("usage")
        if isinstance(usage, dict):
            events.append(
                _usage_event(
                    _as_int(usage.get("prompt_tokens")),
                    _as_int(usage.get("completion_tokens")),
                    _as_int(usage.get("total_tokens"), None),
                )
            )
        return events


class ClaudeEventTranslator(EventTranslator):
    """Claude messages SSE（message_start / content_block_delta / message_delta ...）。"""

    style = ApiStyle.CLAUDE

    def __init__(self) -> None:
        self.input_tokens = 0
        self.output_tokens = 0

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        if raw.type == "ping":
            return []
        data = _load_json(raw, self.style.value)
        if not isinstance(data, dict):
            return []
        event_type = data.get("type") or raw.type

        if event_type == "error":
            return [_event(EventType.ERROR, _error_text(data.get("error"), "Upstream streaming error"))]

        if event_type == "message_start":
            usage = _as_dict(_as_dict(data.get("message")).get("usage"))
            self.input_tokens = _as_int(usage.get("input_tokens"))
            self.output_tokens = _as_int(usage.get("output_tokens"))
            return [_usage_event(self.input_tokens, self.output_tokens)]

        if event_type == "content_block_delta":
            delta = _as_dict(data.get("delta"))
            text = delta.get("text")
            if delta.get("type") == "text_delta" and isinstance(text, str) and text:
                return [_event(EventType.CONTENT, text)]
            thinking = delta.get("thinking")
            if delta.get("type") == "thinking_delta" and isinstance(thinking, str) and thinking:
                return [_event(EventType.REASONING, thinking)]
            return []

        if event_type == "message_delta":
            events: list[RawEvent] = []
            stop_reason = _as_dict(data.get("delta")).get("stop_reason")
            if isinstance(stop_reason, str) and stop_reason:
                events.append(
                    _event(EventType.FINISH_REASON, _CLAUDE_STOP_REASONS.get(stop_reason, stop_reason))
                )
            usage = data.get("usage")
            if isinstance(usage, dict) and "output_tokens" in usage:
                self.output_tokens = _as_int(usage.get("output_tokens"))
                events.append(_usage_event(self.input_tokens, self.output_tokens))
            return events

        if event_type == "message_stop":
            return [_event(EventType.DONE)]

        # content_block_start / content_block_stop carry nothing we surface
        return []


class GeminiEventTranslator(EventTranslator):
    style = ApiStyle.GEMINI

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        data = _load_json(raw, self.style.value)
        if isinstance(data, list):
            # non-SSE streamGenerateContent returns a JSON array of responses
            events: list[RawEvent] = []
            for item in data:
                events.extend(self._translate_item(item))
            return events
        return self._translate_item(data)

    def _translate_item(self, data: Any) -> list[RawEvent]:
        if not isinstance(data, dict):
            return []
        if "error" in data:
            return [_event(EventType.ERROR, _error_text(data["error"], "Upstream streaming error"))]

        events: list[RawEvent] = []
        candidates = data.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            candidate = candidates[0]
            parts = _as_dict(candidate.get("content")).get("parts") or []
            text = "".join(
                part["text"] for part in parts if isinstance(part, dict) and isinstance(part.get("text"), str)
            )
            if text:
                events.append(_event(EventType.CONTENT, text))
            finish_reason = candidate.get("finishReason")
            if isinstance(finish_reason, str) and finish_reason:
                events.append(
                    _event(
                        EventType.FINISH_REASON,
                        _GEMINI_FINISH_REASONS.get(finish_reason, finish_reason.lower()),
                    )
                )

        usage = data.get("usageMetadata")
        if isinstance(usage, dict):
            events.append(
                _usage_event(
                    _as_int(usage.get("promptTokenCount")),
                    _as_int(usage.get("candidatesTokenCount")),
                    _as_int(usage.get("totalTokenCount"), None),
                )
            )
        return events


class OllamaEventTranslator(EventTranslator):
    style = ApiStyle.OLLAMA

    def translate(self, raw: RawEvent) -> list[RawEvent]:
        data = _load_json(raw, self.style.value)
        if not isinstance(data, dict):
            return []
        if "error" in data:
            return [_event(EventType.ERROR, _error_text(data["error"], "Upstream streaming error"))]

        events: list[RawEvent] = []
        content = _as_dict(data.get("message")).get("content")
        if isinstance(content, str) and content:
            events.append(_event(EventType.CONTENT, content))

        if data.get("done") is True:
            events.append(
                _usage_event(
                    _as_int(data.get("prompt_eval_count")),
                    _as_int(data.get("eval_count")),
                )
            )
            done_reason = data.get("done_reason")
            events.append(
                _event(EventType.FINISH_REASON, "length" if done_reason == "length" else "stop")
            )
            events.append(_event(EventType.DONE))
        return events


_TRANSLATORS: dict[ApiStyle, type[EventTranslator]] = {
    ApiStyle.DEV: DevEventTranslator,
    ApiStyle.OPENAI: OpenAIEventTranslator,
    ApiStyle.CLAUDE: ClaudeEventTranslator,
    ApiStyle.GEMINI: GeminiEventTranslator,
    ApiStyle.OLLAMA: OllamaEventTranslator,
}


def get_translator(style: ApiStyle) -> EventTranslator:
    return _TRANSLATORS[style]()


async def iter_backend_events(
    chunks: AsyncIterable[bytes], style: ApiStyle
) -> AsyncIterator[RawEvent]:
    """Frame backend bytes for ``style`` and yield canonical events."""
    translator = get_translator(style)
    framed = iter_ndjson_events(chunks) if style is ApiStyle.OLLAMA else iter_sse_events(chunks)
    async for raw in framed:
        try:
            events = translator.translate(raw)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            # one malformed frame must not end the stream
            logger.warning(
                "%s translator: skip malformed event %r (%s): %.200s",
                style.value,
                raw.type,
                exc,
                raw.data,
            )
            continue
        for event in events:
            yield event


__all__ = [
    "ClaudeEventTranslator",
    "DevEventTranslator",
    "EventTranslator",
    "GeminiEventTranslator",
    "OllamaEventTranslator",
    "OpenAIEventTranslator",
    "get_translator",
    "iter_backend_events",
]
