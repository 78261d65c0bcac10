"""
事件归一化 / 累积状态机

每个请求持有一个 AccumulatedAnswer 与一个 StreamContext，按后端到达顺序逐个
应用 RawEvent：
- 文本类事件追加到 text；推理事件 r 同时追加到 reasoning 与 text，
  这样普通客户端也能在正文里看到推理过程；
- 元数据事件（threadId 等）后写覆盖；列表事件（sources 等）整体替换；
- rlq/q 追加原始文本并重新解析出问题列表；
- error 写入错误并在正文追加可见标记，随即结束；close/done 直接结束；
- 未知事件类型不会被静默丢弃：非空内容作为正文兜底追加，并记录日志。

EventNormalizer 在 apply_event 之上实现推理片段的缓冲刷新策略，时钟可注入。
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from chat_gateway.logging_config import logger
from chat_gateway.settings import settings

from .sse_parser import RawEvent

DEFAULT_STREAM_ERROR_MESSAGE = "API reported stream error"
ERROR_MARKER_TEMPLATE = "\n\n--- API Error: {message} ---"

Clock = Callable[[], float]


class EventType(str, Enum):
    CONTENT = "content"
    REASONING = "r"
    THREAD_ID = "threadId"
    QUERY_MESSAGE_ID = "queryMessageId"
    ANSWER_MESSAGE_ID = "answerMessageId"
    THREAD_TITLE = "threadTitle"
    SOURCES = "sources"
    REPO_SOURCES = "repoSources"
    RELATED_QUESTIONS = "rlq"
    ACTION = "action"
    ERROR = "error"
    PING = "ping"
    CLOSE = "close"
    DONE = "done"
    # produced by backend translators, not by the signed backend itself
    FINISH_REASON = "finish_reason"
    USAGE = "usage"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, name: str) -> EventType:
        alias = _ALIASES.get(name)
        if alias is not None:
            return alias
        try:
            member = cls(name)
        except ValueError:
            return cls.UNKNOWN
        return cls.UNKNOWN if member is cls.UNKNOWN else member


_ALIASES: dict[str, EventType] = {
    "c": EventType.CONTENT,
    "message": EventType.CONTENT,
    "q": EventType.RELATED_QUESTIONS,
}

_TERMINAL_TYPES = frozenset({EventType.ERROR, EventType.CLOSE, EventType.DONE})


@dataclass
class RelatedQuestion:
    id: str
    title: str


@dataclass
class UsageCounters:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class AccumulatedAnswer:
    text: str = ""
    reasoning: str | None = None
    sources: list[Any] = field(default_factory=list)
    repo_sources: list[Any] = field(default_factory=list)
    actions: list[dict[str, Any]] = field(default_factory=list)
    related_questions_raw: str = ""
    related_questions: list[RelatedQuestion] = field(default_factory=list)
    thread_id: str | None = None
    query_message_id: str | None = None
    answer_message_id: str | None = None
    thread_title: str | None = None
    finish_reason: str | None = None
    usage: UsageCounters | None = None
    error: str | None = None
    is_finished: bool = False

    def finish(self) -> bool:
        """Mark the answer finished; returns False when it already was."""
        if self.is_finished:
            return False
        self.is_finished = True
        return True


@dataclass
class StreamContext:
    pending_reasoning: str = ""
    last_flush_at: float = 0.0
    sources_sent: bool = False
    error_sent: bool = False


@dataclass(frozen=True)
class ApplyResult:
    updated: bool = False
    terminal: bool = False
    # client-visible text appended to AccumulatedAnswer.text by this step
    delta: str = ""


_NOOP = ApplyResult()


def parse_related_questions(raw: str) -> list[RelatedQuestion]:
    titles = [line.strip() for line in raw.split("\n")]
    return [
        RelatedQuestion(id=str(index), title=title)
        for index, title in enumerate(t for t in titles if t)
    ]


def _parse_json(event: RawEvent) -> tuple[bool, Any]:
    try:
        return True, json.loads(event.data)
    except (TypeError, ValueError):
        logger.warning(
            "normalizer: malformed JSON payload for event %r: %.200s", event.type, event.data
        )
        return False, None


def _error_message(data: str) -> str:
    text = data.strip()
    if not text:
        return DEFAULT_STREAM_ERROR_MESSAGE
    try:
        payload = json.loads(text)
    except ValueError:
        return text
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"].strip():
            return err["message"].strip()
        if isinstance(err, str) and err.strip():
            return err.strip()
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    elif isinstance(payload, str) and payload.strip():
        return payload.strip()
    return text


def _append_text(answer: AccumulatedAnswer, text: str) -> ApplyResult:
    answer.text += text
    return ApplyResult(updated=True, delta=text)


def apply_event(
    event: RawEvent, answer: AccumulatedAnswer, context: StreamContext | None = None
) -> ApplyResult:
    """
    Fold one backend event into the accumulated answer.

    ``context`` is accepted for symmetry with the normalizer; buffering lives
    in EventNormalizer and this function has no side effects on it.
    """
    if answer.is_finished:
        return ApplyResult(terminal=True)

    kind = EventType.from_raw(event.type)
    data = event.data

    if kind is EventType.PING:
        return _NOOP
    if kind is EventType.UNKNOWN:
        logger.warning("normalizer: unhandled event type %r", event.type)
        if data.strip():
            return _append_text(answer, data)
        return _NOOP
    if not data and kind not in _TERMINAL_TYPES:
        return _NOOP

    if kind is EventType.CONTENT:
        return _append_text(answer, data)

    if kind is EventType.REASONING:
        answer.reasoning = (answer.reasoning or "") + data
        return _append_text(answer, data)

    if kind is EventType.THREAD_ID:
        answer.thread_id = data
        return ApplyResult(updated=True)
    if kind is EventType.QUERY_MESSAGE_ID:
        answer.query_message_id = data
        return ApplyResult(updated=True)
    if kind is EventType.ANSWER_MESSAGE_ID:
        answer.answer_message_id = data
        return ApplyResult(updated=True)
    if kind is EventType.THREAD_TITLE:
        answer.thread_title = data
        return ApplyResult(updated=True)

    if kind in (EventType.SOURCES, EventType.REPO_SOURCES):
        ok, parsed = _parse_json(event)
        if not ok:
            return _NOOP
        if parsed is None:
            parsed = []
        if not isinstance(parsed, list):
            logger.warning("normalizer: %s payload is not a list; ignored", event.type)
            return _NOOP
        if kind is EventType.SOURCES:
            answer.sources = parsed
        else:
            answer.repo_sources = parsed
        return ApplyResult(updated=True)

    if kind is EventType.RELATED_QUESTIONS:
        if answer.related_questions_raw:
            answer.related_questions_raw += "\n"
        answer.related_questions_raw += data
        answer.related_questions = parse_related_questions(answer.related_questions_raw)
        return ApplyResult(updated=True)

    if kind is EventType.ACTION:
        ok, parsed = _parse_json(event)
        if not ok or not isinstance(parsed, dict):
            return _NOOP
        for index, existing in enumerate(answer.actions):
            if existing.get("type") == parsed.get("type"):
                answer.actions[index] = parsed
                break
        else:
            answer.actions.append(parsed)
        return ApplyResult(updated=True)

    if kind is EventType.FINISH_REASON:
        answer.finish_reason = data
        return ApplyResult(updated=True)

    if kind is EventType.USAGE:
        ok, parsed = _parse_json(event)
        if not ok or not isinstance(parsed, dict):
            return _NOOP
        try:
            prompt = int(parsed.get("prompt_tokens") or 0)
            completion = int(parsed.get("completion_tokens") or 0)
            total = int(parsed.get("total_tokens") or prompt + completion)
        except (TypeError, ValueError):
            logger.warning("normalizer: invalid usage payload: %.200s", data)
            return _NOOP
        answer.usage = UsageCounters(
            prompt_tokens=prompt, completion_tokens=completion, total_tokens=total
        )
        return ApplyResult(updated=True)

    if kind is EventType.ERROR:
        message = _error_message(data)
        logger.error("normalizer: backend reported stream error: %s", message)
        answer.error = message
        answer.finish_reason = "error"
        marker = ERROR_MARKER_TEMPLATE.format(message=message)
        answer.text += marker
        answer.finish()
        return ApplyResult(updated=True, terminal=True, delta=marker)

    if kind in (EventType.CLOSE, EventType.DONE):
        logger.debug("normalizer: explicit stream closing event %r", event.type)
        answer.finish()
        return ApplyResult(updated=True, terminal=True)

    return _NOOP


class EventNormalizer:
    """
    Per-request normalizer: owns the AccumulatedAnswer/StreamContext pair and
    applies the reasoning buffer policy on top of apply_event.

    Reasoning fragments are held back until the buffer exceeds ``flush_chars``,
    ``flush_interval`` seconds passed since the last flush, or the buffer
    contains a line break. Any other event flushes the buffer first, so
    reasoning text never moves relative to other events.
    """

    def __init__(
        self,
        *,
        flush_chars: int | None = None,
        flush_interval: float | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.flush_chars = settings.reasoning_flush_chars if flush_chars is None else flush_chars
        self.flush_interval = (
            settings.reasoning_flush_interval_ms / 1000.0
            if flush_interval is None
            else flush_interval
        )
        self._clock = clock
        self.answer = AccumulatedAnswer()
        self.context = StreamContext(last_flush_at=clock())

    @property
    def is_finished(self) -> bool:
        return self.answer.is_finished

    def _should_flush(self) -> bool:
        pending = self.context.pending_reasoning
        if not pending:
            return False
        if len(pending) > self.flush_chars:
            return True
        if "\n" in pending:
            return True
        return self._clock() - self.context.last_flush_at > self.flush_interval

    def flush_reasoning(self) -> ApplyResult:
        pending = self.context.pending_reasoning
        if not pending:
            return _NOOP
        self.context.pending_reasoning = ""
        self.context.last_flush_at = self._clock()
        return apply_event(
            RawEvent(type=EventType.REASONING.value, data=pending), self.answer, self.context
        )

    def feed(self, event: RawEvent) -> list[ApplyResult]:
        """Apply one event; returns the steps it produced, in emission order."""
        if self.answer.is_finished:
            return [ApplyResult(terminal=True)]

        kind = EventType.from_raw(event.type)
        if kind is EventType.PING:
            return []

        if kind is EventType.REASONING:
            if not event.data:
                return []
            self.context.pending_reasoning += event.data
            if self._should_flush():
                return [self.flush_reasoning()]
            return []

        steps: list[ApplyResult] = []
        if self.context.pending_reasoning:
            steps.append(self.flush_reasoning())
        steps.append(apply_event(event, self.answer, self.context))
        return steps

    def close(self) -> list[ApplyResult]:
        """
        End of backend stream: flush remaining reasoning unconditionally and
        mark the answer finished.
        """
        steps: list[ApplyResult] = []
        if self.context.pending_reasoning and not self.answer.is_finished:
            steps.append(self.flush_reasoning())
        self.answer.finish()
        return steps


__all__ = [
    "AccumulatedAnswer",
    "ApplyResult",
    "Clock",
    "DEFAULT_STREAM_ERROR_MESSAGE",
    "ERROR_MARKER_TEMPLATE",
    "EventNormalizer",
    "EventType",
    "RelatedQuestion",
    "StreamContext",
    "UsageCounters",
    "apply_event",
    "parse_related_questions",
]
