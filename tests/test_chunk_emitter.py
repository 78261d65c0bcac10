from __future__ import annotations

import json

from chat_gateway.api.v1.chat.accumulator import AccumulatedAnswer, RelatedQuestion, UsageCounters
from chat_gateway.api.v1.chat.chunk_emitter import DONE_SENTINEL, ChunkEmitter
from tests.utils import decode_sse_payloads


def _emitter() -> ChunkEmitter:
    return ChunkEmitter("dev/dev-claude-3-7-sonnet", request_id="chatcmpl-test", created=1700000000)


def test_role_init_chunk_shape():
    payload = _emitter().to_payload(ChunkEmitter.role_init())
    assert payload == {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "dev/dev-claude-3-7-sonnet",
        "choices": [{"index": 0, "delta": {"role": "assistant"}, "finish_reason": None}],
    }


def test_delta_chunk_is_encoded_as_sse_frame_with_unicode():
    encoded = _emitter().encode(ChunkEmitter.delta("你好"))
    assert encoded.startswith(b"data: ")
    assert encoded.endswith(b"\n\n")
    assert "你好".encode("utf-8") in encoded
    (payload,) = decode_sse_payloads(encoded)
    assert payload["choices"][0]["delta"] == {"content": "你好"}


def test_function_payload_chunk_serializes_arguments_as_json_string():
    payload = _emitter().to_payload(
        ChunkEmitter.function_payload("sources", {"sources": [{"url": "a"}]})
    )
    call = payload["choices"][0]["delta"]["function_call"]
    assert call["name"] == "sources"
    assert json.loads(call["arguments"]) == {"sources": [{"url": "a"}]}


def test_error_chunk_carries_top_level_error():
    payload = _emitter().to_payload(ChunkEmitter.error("boom"))
    assert payload["error"] == {"message": "boom", "type": "upstream_error", "code": "stream_error"}
    assert payload["choices"][0]["finish_reason"] is None


def test_finish_chunk_and_sentinel():
    payload = _emitter().to_payload(ChunkEmitter.finish("length"))
    assert payload["choices"][0] == {"index": 0, "delta": {}, "finish_reason": "length"}
    assert DONE_SENTINEL == b"data: [DONE]\n\n"


def test_all_chunks_share_request_identity():
    emitter = ChunkEmitter("openai/gpt-4")
    ids = {
        emitter.to_payload(chunk)["id"]
        for chunk in (emitter.role_init(), emitter.delta("a"), emitter.finish("stop"))
    }
    assert len(ids) == 1
    assert next(iter(ids)).startswith("chatcmpl-")


def test_aggregate_defaults_to_stop_and_zero_usage():
    answer = AccumulatedAnswer(text="Hello world", is_finished=True)
    result = _emitter().aggregate(answer)
    assert result == {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "dev/dev-claude-3-7-sonnet",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Hello world"},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


def test_aggregate_reports_backend_reason_usage_and_extras():
    answer = AccumulatedAnswer(
        text="abc",
        reasoning="a",
        sources=[{"url": "x"}],
        finish_reason="length",
        usage=UsageCounters(prompt_tokens=2, completion_tokens=3, total_tokens=5),
        is_finished=True,
    )
    result = _emitter().aggregate(answer)
    assert result["choices"][0]["finish_reason"] == "length"
    assert result["choices"][0]["message"]["reasoning_content"] == "a"
    assert result["usage"] == {"prompt_tokens": 2, "completion_tokens": 3, "total_tokens": 5}
    assert result["sources"] == [{"url": "x"}]
    assert "error" not in result


def test_aggregate_error_overrides_finish_reason():
    answer = AccumulatedAnswer(text="x", error="boom", finish_reason="stop", is_finished=True)
    result = _emitter().aggregate(answer)
    assert result["choices"][0]["finish_reason"] == "error"
    assert result["error"]["message"] == "boom"


def test_aggregate_surfaces_conversation_metadata():
    answer = AccumulatedAnswer(
        text="hi",
        thread_id="t-1",
        thread_title="Greeting",
        query_message_id="q-1",
        answer_message_id="a-1",
        repo_sources=[{"repo": "org/app"}],
        related_questions_raw="Why?\nHow?",
        related_questions=[RelatedQuestion(id="0", title="Why?"), RelatedQuestion(id="1", title="How?")],
        actions=[{"type": "open_file", "path": "main.py"}],
        is_finished=True,
    )
    result = _emitter().aggregate(answer)
    assert result["thread_id"] == "t-1"
    assert result["thread_title"] == "Greeting"
    assert result["query_message_id"] == "q-1"
    assert result["answer_message_id"] == "a-1"
    assert result["repo_sources"] == [{"repo": "org/app"}]
    assert result["related_questions"] == [{"id": "0", "title": "Why?"}, {"id": "1", "title": "How?"}]
    assert result["actions"] == [{"type": "open_file", "path": "main.py"}]
    assert "sources" not in result
