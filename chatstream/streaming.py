"""Incremental answer streaming with session-based cancellation.

One ``AnswerStream`` instance drives exactly one POST to the stream start
endpoint. The response body is plain UTF-8 text delivered in arbitrary byte
fragments; fragments are decoded incrementally so multi-byte characters split
across reads survive intact.

Lifecycle: INIT -> SENT -> STREAMING -> COMPLETED | CANCELLED | FAILED.
The session token is checked before every body read. A read that is already
waiting is never interrupted; only the stream read timeout (if configured)
bounds it.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from .correlation import CorrelationTracker
from .errors import StreamFailed
from .json_helpers import to_bounded_json
from .models import StreamAnswerRequest, StreamAnswerResult
from .session import StreamSession
from .telemetry import ANSWER_COMPLETE_EVENT, TelemetrySink, emit_safely

LOG = logging.getLogger(__name__)

CHAT_ID_HEADER = "chat_id"

ChunkCallback = Callable[[str, "str | None"], "Awaitable[None] | None"]


class StreamState(str, Enum):
    """Lifecycle states of one streaming invocation."""

    INIT = "init"
    SENT = "sent"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AnswerStream:
    """Per-invocation state for one streamed answer.

    The HTTP client passed in is owned by this stream and closed on every
    exit path.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        request: StreamAnswerRequest,
        session: StreamSession,
        session_token: int,
        on_chunk: ChunkCallback | None,
        correlation: CorrelationTracker,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._headers = headers
        self.request = request
        self._session = session
        self._session_token = session_token
        self._on_chunk = on_chunk
        self._correlation = correlation
        self._telemetry = telemetry
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []
        self._started = time.monotonic()
        self.state = StreamState.INIT
        self.new_chat_id: str | None = None
        self.chunk_count = 0

    @property
    def accumulated(self) -> str:
        return "".join(self._parts)

    def _transition(self, state: StreamState) -> None:
        LOG.debug(
            "answer stream %s -> %s elapsed=%.3fs chunks=%s",
            self.state.value,
            state.value,
            time.monotonic() - self._started,
            self.chunk_count,
        )
        self.state = state

    def _result(self, *, cancelled: bool = False) -> StreamAnswerResult:
        return StreamAnswerResult(
            user_prompt=self.request.user_prompt,
            final_answer=self.accumulated,
            new_chat_id=self.new_chat_id,
            cancelled=cancelled,
        )

    async def run(self) -> StreamAnswerResult:
        """Send the request and read the body until it ends or the session moves on."""
        response: Any = None
        try:
            try:
                payload = self.request.to_payload()
                LOG.debug("answer stream start url=%s payload=%s", self._url, to_bounded_json(payload))
                self._transition(StreamState.SENT)
                response = await self._client.send(
                    self._client.build_request("POST", self._url, headers=self._headers, json=payload),
                    stream=True,
                )
                self._correlation.record_from_headers(response.headers)
                status = response.status_code
                if not 200 <= status < 300:
                    raise StreamFailed(f"HTTP status {status}", status_code=status)
                if self.request.conversation_id is None:
                    self.new_chat_id = response.headers.get(CHAT_ID_HEADER)
                self._transition(StreamState.STREAMING)
                return await self._read_body(response)
            except StreamFailed:
                self._transition(StreamState.FAILED)
                raise
            except asyncio.CancelledError:
                LOG.debug("answer stream task cancelled chunks=%s", self.chunk_count)
                raise
            except Exception as exc:
                self._transition(StreamState.FAILED)
                raise StreamFailed(f"An error occurred while streaming data: {exc}") from exc
        finally:
            await self._release(response)

    async def _read_body(self, response: Any) -> StreamAnswerResult:
        fragments = response.aiter_bytes()
        try:
            while True:
                if not self._session.is_current(self._session_token):
                    # Closing the response drops the connection, which the backend sees as a disconnect.
                    await response.aclose()
                    self._transition(StreamState.CANCELLED)
                    return self._result(cancelled=True)

                try:
                    data = await anext(fragments)
                except StopAsyncIteration:
                    await self._deliver(self._decoder.decode(b"", final=True))
                    self._transition(StreamState.COMPLETED)
                    emit_safely(
                        self._telemetry,
                        ANSWER_COMPLETE_EVENT,
                        chat_id=self.new_chat_id or self.request.conversation_id,
                        chunks=self.chunk_count,
                    )
                    return self._result()

                await self._deliver(self._decoder.decode(data))
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    pass

    async def _deliver(self, text: str) -> None:
        """Accumulate one decoded chunk and hand it to the callback."""
        if not text:
            return
        self.chunk_count += 1
        self._parts.append(text)
        if self._on_chunk is None:
            return
        outcome = self._on_chunk(text, self.new_chat_id)
        if inspect.isawaitable(outcome):
            await outcome

    async def _release(self, response: Any) -> None:
        """Close the response and the stream client, even under cancellation."""
        cleanup_cancelled = False
        if response is not None:
            try:
                await asyncio.shield(response.aclose())
            except asyncio.CancelledError:
                cleanup_cancelled = True
            except Exception:
                pass
        try:
            await asyncio.shield(self._client.aclose())
        except asyncio.CancelledError:
            cleanup_cancelled = True
        except Exception:
            pass
        LOG.debug(
            "answer stream closed state=%s elapsed=%.3fs chunks=%s",
            self.state.value,
            time.monotonic() - self._started,
            self.chunk_count,
        )
        if cleanup_cancelled:
            raise asyncio.CancelledError
