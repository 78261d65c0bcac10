"""
SSE（text/event-stream）事件解析

约定：
- 输入为 bytes 迭代器（网络分块可能在任意位置切断，包括多字节 UTF-8 字符中间）；
- 输出为有序的 RawEvent 序列，只做分帧，不解释 data 的语义；
- 注释行（以 ":" 开头）、id/retry 行以及未知字段都不参与数据；
- 每个请求新建一个解码器，不跨请求共享状态。
"""

from __future__ import annotations

import codecs
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

DEFAULT_EVENT_TYPE = "message"


@dataclass(frozen=True)
class RawEvent:
    type: str
    data: str


class SSEDecoder:
    """
    Incremental text/event-stream decoder.

    ``feed()`` accepts arbitrary byte chunks and returns the events completed by
    that chunk; ``flush()`` returns the residual event at end of stream.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending_cr = False
        self._event_type: str | None = None
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> list[RawEvent]:
        return self._feed_text(self._decoder.decode(chunk))

    def flush(self) -> list[RawEvent]:
        events = self._feed_text(self._decoder.decode(b"", final=True))
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._process_line(line)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _feed_text(self, text: str) -> list[RawEvent]:
        if not text:
            return []
        # "\r\n" may be split across chunks: drop the "\n" that completes a
        # "\r" we already treated as a line terminator.
        if self._pending_cr and text.startswith("\n"):
            text = text[1:]
        self._pending_cr = text.endswith("\r")

        self._buffer += text
        lines = self._buffer.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        self._buffer = lines.pop()

        events: list[RawEvent] = []
        for line in lines:
            if line == "":
                event = self._dispatch()
                if event is not None:
                    events.append(event)
                continue
            self._process_line(line)
        return events

    def _process_line(self, line: str) -> None:
        if line.startswith(":"):
            # comment / keep-alive
            return

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event_type = value
        elif name == "data":
            self._data_lines.append(value)
        # id / retry / unknown fields are not part of the event payload

    def _dispatch(self) -> RawEvent | None:
        event_type = self._event_type or DEFAULT_EVENT_TYPE
        data_lines = self._data_lines
        self._event_type = None
        self._data_lines = []
        if not data_lines:
            return None
        return RawEvent(type=event_type, data="\n".join(data_lines))


async def iter_sse_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[RawEvent]:
    """Frame a backend byte stream into RawEvents, lazily and in order."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        if not chunk:
            continue
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event


async def iter_ndjson_events(chunks: AsyncIterable[bytes]) -> AsyncIterator[RawEvent]:
    """
    Newline-delimited JSON framing (Ollama): every non-blank line becomes a
    RawEvent of the default type.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        if not chunk:
            continue
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            line = line.strip()
            if line:
                yield RawEvent(type=DEFAULT_EVENT_TYPE, data=line)
    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield RawEvent(type=DEFAULT_EVENT_TYPE, data=buffer.strip())


__all__ = [
    "DEFAULT_EVENT_TYPE",
    "RawEvent",
    "SSEDecoder",
    "iter_ndjson_events",
    "iter_sse_events",
]
