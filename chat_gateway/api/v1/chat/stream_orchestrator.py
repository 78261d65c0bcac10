"""
流式编排

一次请求对应一个 ChatCompletionPipeline：
- open()：建立上游连接并检查状态码。连接失败 / 非 2xx 在这里抛出，
  此时还没有向客户端写任何字节，客户端能拿到干净的 JSON 错误；
- stream()：上游字节 → 事件解析 → 归一化 → chunk 编码，逐块转发给客户端；
- aggregate()：同一条流水线把上游读完，最后返回一个 chat.completion 对象。

流中途出现的错误（后端 error 事件、读超时、连接中断、解析异常）都会折叠成
错误事件，然后照常输出 finish chunk 与 [DONE]，不会让客户端连接悬空。
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from chat_gateway.errors import BackendHttpError, BackendStreamError, TransportError
from chat_gateway.log_sanitizer import redact_url_query_key
from chat_gateway.logging_config import logger
from chat_gateway.schemas import ApiStyle

from .accumulator import EventNormalizer, EventType
from .chunk_emitter import DONE_SENTINEL, ChunkEmitter, OutputChunk, resolve_finish_reason
from .event_translators import iter_backend_events
from .request_builder import BackendRequest
from .sse_parser import RawEvent


class ChatCompletionPipeline:
    def __init__(
        self,
        client: httpx.AsyncClient,
        backend_request: BackendRequest,
        *,
        api_style: ApiStyle,
        model: str,
        emitter: ChunkEmitter | None = None,
        normalizer: EventNormalizer | None = None,
    ) -> None:
        self.client = client
        self.backend_request = backend_request
        self.api_style = api_style
        self.emitter = emitter or ChunkEmitter(model)
        self.normalizer = normalizer or EventNormalizer()
        self._response: httpx.Response | None = None
        self._log_url = redact_url_query_key(backend_request.url)

    async def open(self) -> None:
        """Connect to the backend; raises before anything reaches the client."""
        request = self.client.build_request(
            "POST",
            self.backend_request.url,
            headers=self.backend_request.headers,
            json=self.backend_request.body,
        )
        logger.info("pipeline: opening backend stream %s (id=%s)", self._log_url, self.emitter.request_id)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            logger.warning("pipeline: backend connect timeout for %s: %s", self._log_url, exc)
            raise TransportError(
                f"Timed out connecting to backend: {exc}", status_code=504
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("pipeline: backend transport error for %s: %s", self._log_url, exc)
            raise TransportError(f"Failed to connect to backend: {exc}") from exc

        if not response.is_success:
            try:
                text_bytes = await response.aread()
            except httpx.HTTPError:
                text_bytes = b""
            finally:
                await response.aclose()
            text = text_bytes.decode("utf-8", errors="ignore")
            logger.warning(
                "pipeline: backend HTTP error %s for %s; response=%.500s",
                response.status_code,
                self._log_url,
                text,
            )
            raise BackendHttpError(response.status_code, text, url=self._log_url)

        logger.info(
            "pipeline: connected to backend %s with status %s", self._log_url, response.status_code
        )
        self._response = response

    async def aclose(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()

    async def _iter_events(self) -> AsyncIterator[RawEvent]:
        if self._response is None:
            raise RuntimeError("pipeline is not open")
        try:
            async for event in iter_backend_events(self._response.aiter_bytes(), self.api_style):
                yield event
        except httpx.HTTPError as exc:
            err = BackendStreamError(f"Upstream stream interrupted: {exc}")
            logger.warning("pipeline: %s (url=%s)", err.message, self._log_url)
            yield RawEvent(type=EventType.ERROR.value, data=err.message)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.exception("pipeline: failed to process backend stream from %s", self._log_url)
            yield RawEvent(type=EventType.ERROR.value, data=f"Proxy processing error: {exc}")

    async def _iter_chunks(self) -> AsyncIterator[OutputChunk]:
        """
        Output chunks after role-init, ending with the finish chunk.
        The backend response is released as soon as the stream ends or a
        terminal event arrives.
        """
        normalizer = self.normalizer
        emitter = self.emitter
        event_count = 0
        try:
            async with aclosing(self._iter_events()) as events:
                async for event in events:
                    event_count += 1
                    for step in normalizer.feed(event):
                        if step.delta:
                            yield emitter.delta(step.delta)
                    if normalizer.is_finished:
                        break
        finally:
            await self.aclose()

        for step in normalizer.close():
            if step.delta:
                yield emitter.delta(step.delta)

        answer = normalizer.answer
        context = normalizer.context
        if answer.sources and not context.sources_sent:
            context.sources_sent = True
            yield emitter.function_payload("sources", {"sources": answer.sources})
        if answer.error is not None and not context.error_sent:
            context.error_sent = True
            yield emitter.error(answer.error)

        finish_reason = resolve_finish_reason(answer)
        logger.info(
            "pipeline: finished id=%s model=%s events=%d chars=%d finish=%s error=%r",
            emitter.request_id,
            emitter.model,
            event_count,
            len(answer.text),
            finish_reason,
            answer.error,
        )
        yield emitter.finish(finish_reason)

    async def stream(self) -> AsyncIterator[bytes]:
        """Canonical SSE bytes: role-init, deltas, side payloads, finish, [DONE]."""
        emitter = self.emitter
        yield emitter.encode(emitter.role_init())
        async with aclosing(self._iter_chunks()) as chunks:
            async for chunk in chunks:
                yield emitter.encode(chunk)
        yield DONE_SENTINEL

    async def aggregate(self) -> dict[str, Any]:
        async with aclosing(self._iter_chunks()) as chunks:
            async for _ in chunks:
                pass
        return self.emitter.aggregate(self.normalizer.answer)


__all__ = ["ChatCompletionPipeline"]
