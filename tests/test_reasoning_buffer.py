"""
推理片段（r 事件）缓冲刷新策略：长度阈值 / 时间阈值 / 换行 / 流结束强制刷新。
"""

from __future__ import annotations

from chat_gateway.api.v1.chat.accumulator import EventNormalizer
from chat_gateway.api.v1.chat.sse_parser import RawEvent


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _normalizer(clock: FakeClock) -> EventNormalizer:
    return EventNormalizer(flush_chars=50, flush_interval=0.1, clock=clock)


def _deltas(steps) -> list[str]:
    return [step.delta for step in steps if step.delta]


def test_short_reasoning_is_held_until_stream_closes():
    clock = FakeClock()
    normalizer = _normalizer(clock)

    emitted: list[str] = []
    for fragment in ["Let ", "me ", "think"]:
        emitted += _deltas(normalizer.feed(RawEvent("r", fragment)))
    assert emitted == []
    assert normalizer.answer.text == ""

    closing = _deltas(normalizer.close())
    assert closing == ["Let me think"]
    assert normalizer.answer.text == "Let me think"
    assert normalizer.answer.reasoning == "Let me think"
    assert normalizer.answer.is_finished is True
    # flushed exactly once
    assert _deltas(normalizer.close()) == []


def test_reasoning_flushes_when_buffer_exceeds_size_threshold():
    normalizer = _normalizer(FakeClock())
    assert _deltas(normalizer.feed(RawEvent("r", "a" * 30))) == []
    assert _deltas(normalizer.feed(RawEvent("r", "b" * 21))) == ["a" * 30 + "b" * 21]
    assert normalizer.context.pending_reasoning == ""


def test_reasoning_flushes_on_line_break():
    normalizer = _normalizer(FakeClock())
    assert _deltas(normalizer.feed(RawEvent("r", "step one\n"))) == ["step one\n"]


def test_reasoning_flushes_after_interval_elapsed():
    clock = FakeClock()
    normalizer = _normalizer(clock)
    assert _deltas(normalizer.feed(RawEvent("r", "slow"))) == []
    clock.advance(0.2)
    assert _deltas(normalizer.feed(RawEvent("r", " thought"))) == ["slow thought"]

    # the interval restarts after each flush
    assert _deltas(normalizer.feed(RawEvent("r", "next"))) == []


def test_other_events_flush_pending_reasoning_first():
    normalizer = _normalizer(FakeClock())
    steps = normalizer.feed(RawEvent("r", "thinking"))
    assert steps == []
    steps = normalizer.feed(RawEvent("content", "Answer"))
    assert _deltas(steps) == ["thinking", "Answer"]
    assert normalizer.answer.text == "thinkingAnswer"


def test_metadata_event_flushes_pending_reasoning_without_text_change():
    normalizer = _normalizer(FakeClock())
    normalizer.feed(RawEvent("r", "hmm"))
    steps = normalizer.feed(RawEvent("threadId", "t-1"))
    assert _deltas(steps) == ["hmm"]
    assert normalizer.answer.thread_id == "t-1"


def test_ping_does_not_flush_reasoning():
    normalizer = _normalizer(FakeClock())
    normalizer.feed(RawEvent("r", "hmm"))
    assert normalizer.feed(RawEvent("ping", "")) == []
    assert normalizer.context.pending_reasoning == "hmm"


def test_error_event_flushes_reasoning_before_marker():
    normalizer = _normalizer(FakeClock())
    normalizer.feed(RawEvent("r", "partial"))
    steps = normalizer.feed(RawEvent("error", "boom"))
    assert _deltas(steps) == ["partial", "\n\n--- API Error: boom ---"]
    assert steps[-1].terminal is True
    assert normalizer.is_finished is True
    # events after the error are ignored
    assert _deltas(normalizer.feed(RawEvent("content", "late"))) == []
    assert _deltas(normalizer.close()) == []
    assert normalizer.answer.text == "partial\n\n--- API Error: boom ---"
