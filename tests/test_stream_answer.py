import asyncio

import httpx
import pytest

from chatstream.api_client import ChatApiClient
from chatstream.auth import StaticTokenProvider
from chatstream.config import ClientConfig
from chatstream.errors import AuthTokenUnavailable, StreamFailed
from chatstream.models import ChatModeKey, StreamAnswerRequest
from chatstream.session import StreamSession
from chatstream.telemetry import RecordingTelemetrySink


def _make_cfg(**overrides: object) -> ClientConfig:
    raw = {
        "api_base_url": "https://chat.example.test/api",
        "api_key": "key-123",
    }
    raw.update(overrides)
    return ClientConfig.model_validate(raw)


class _FakeStreamResponse:
    def __init__(
        self,
        fragments: list[bytes],
        *,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        error_after: Exception | None = None,
    ) -> None:
        self.status_code = status_code
        self.headers = httpx.Headers(headers or {})
        self._fragments = fragments
        self._error_after = error_after
        self.pulled = 0
        self.closed = False

    async def aiter_bytes(self):
        for fragment in self._fragments:
            self.pulled += 1
            yield fragment
        if self._error_after is not None:
            raise self._error_after

    async def aclose(self) -> None:
        self.closed = True


class _FakeStreamClient:
    def __init__(self, response: _FakeStreamResponse | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.requests: list[dict[str, object]] = []
        self.closed = False

    def build_request(self, method: str, url: str, **kwargs: object) -> object:
        self.requests.append({"method": method, "url": url, **kwargs})
        return object()

    async def send(self, *_args, **_kwargs):
        if self.error is not None:
            raise self.error
        return self.response

    async def aclose(self) -> None:
        self.closed = True


def _client_with_stream(stream_client: _FakeStreamClient, *, token: str | None = "tok") -> ChatApiClient:
    client = ChatApiClient(_make_cfg(), StaticTokenProvider(token), telemetry=RecordingTelemetrySink())
    client._build_stream_client = lambda: stream_client  # type: ignore[method-assign]
    return client


def _generic_request(**overrides: object) -> StreamAnswerRequest:
    raw: dict[str, object] = {
        "conversation_id": None,
        "user_prompt": "hello",
        "chat_mode_key": ChatModeKey.GENERIC,
        "language_model_key": "gpt-x",
    }
    raw.update(overrides)
    return StreamAnswerRequest(**raw)


def test_stream_answer_delivers_chunks_and_returns_full_answer() -> None:
    response = _FakeStreamResponse(
        [b"Hi", b" there"],
        headers={"chat_id": "abc123", "x-correlation-id": "corr-s1"},
    )
    stream_client = _FakeStreamClient(response)
    client = _client_with_stream(stream_client)
    calls: list[tuple[str, str | None]] = []

    result = asyncio.run(
        client.stream_answer(_generic_request(), StreamSession(), lambda text, chat_id: calls.append((text, chat_id)))
    )

    assert calls == [("Hi", "abc123"), (" there", "abc123")]
    assert result.user_prompt == "hello"
    assert result.final_answer == "Hi there"
    assert result.new_chat_id == "abc123"
    assert result.cancelled is False
    assert client.correlation_id == "corr-s1"
    assert response.closed and stream_client.closed
    assert client.telemetry.events == [("answer-complete", {"chat_id": "abc123", "chunks": 2})]


def test_stream_answer_sends_blanked_payload_and_headers() -> None:
    stream_client = _FakeStreamClient(_FakeStreamResponse([b"ok"]))
    client = _client_with_stream(stream_client)
    request = _generic_request(knowledge_base_key="kb-1")

    asyncio.run(client.stream_answer(request, StreamSession()))

    sent = stream_client.requests[0]
    assert sent["method"] == "POST"
    assert sent["url"] == "https://chat.example.test/api/chat-service/chat/stream/start"
    assert sent["json"] == {
        "chat_id": None,
        "user_prompt": "hello",
        "chat_mode_key": "generic",
        "language_model_key": "gpt-x",
        "knowledge_base_key": "",
    }
    headers = sent["headers"]
    assert isinstance(headers, dict)
    assert headers["Authorization"] == "Bearer tok"
    assert headers["apikey"] == "key-123"
    assert headers["Content-Type"] == "application/json"


def test_session_change_cancels_before_next_buffered_chunk() -> None:
    response = _FakeStreamResponse([b"Hi", b" there", b"!"], headers={"chat_id": "abc123"})
    stream_client = _FakeStreamClient(response)
    client = _client_with_stream(stream_client)
    session = StreamSession()
    calls: list[tuple[str, str | None]] = []

    def on_chunk(text: str, chat_id: str | None) -> None:
        calls.append((text, chat_id))
        session.advance()

    result = asyncio.run(client.stream_answer(_generic_request(), session, on_chunk))

    assert calls == [("Hi", "abc123")]
    assert result.final_answer == "Hi"
    assert result.new_chat_id == "abc123"
    assert result.cancelled is True
    assert response.pulled == 1
    assert response.closed and stream_client.closed
    assert client.telemetry.events == []


def test_stale_session_token_cancels_before_first_read() -> None:
    response = _FakeStreamResponse([b"never"], headers={"chat_id": "abc123"})
    client = _client_with_stream(_FakeStreamClient(response))
    session = StreamSession()
    stale = session.token
    session.advance()

    result = asyncio.run(client.stream_answer(_generic_request(), session, session_token=stale))

    assert result.final_answer == ""
    assert result.cancelled is True
    assert response.pulled == 0


def test_status_error_raises_stream_failed_without_callbacks() -> None:
    response = _FakeStreamResponse([b"body"], status_code=500, headers={"x-correlation-id": "corr-500"})
    stream_client = _FakeStreamClient(response)
    client = _client_with_stream(stream_client)
    calls: list[str] = []

    with pytest.raises(StreamFailed) as info:
        asyncio.run(client.stream_answer(_generic_request(), StreamSession(), lambda text, _id: calls.append(text)))

    assert info.value.status_code == 500
    assert calls == []
    assert response.pulled == 0
    assert client.correlation_id == "corr-500"
    assert response.closed and stream_client.closed


def test_transport_error_is_wrapped_in_stream_failed() -> None:
    req = httpx.Request("POST", "https://chat.example.test/api/chat-service/chat/stream/start")
    stream_client = _FakeStreamClient(error=httpx.ConnectError("unreachable", request=req))
    client = _client_with_stream(stream_client)

    with pytest.raises(StreamFailed) as info:
        asyncio.run(client.stream_answer(_generic_request(), StreamSession()))

    assert info.value.status_code is None
    assert isinstance(info.value.__cause__, httpx.ConnectError)
    assert stream_client.closed


def test_read_error_mid_stream_fails_without_partial_result() -> None:
    req = httpx.Request("POST", "https://chat.example.test/api/chat-service/chat/stream/start")
    response = _FakeStreamResponse([b"partial"], error_after=httpx.ReadTimeout("stalled", request=req))
    stream_client = _FakeStreamClient(response)
    client = _client_with_stream(stream_client)
    calls: list[str] = []

    with pytest.raises(StreamFailed) as info:
        asyncio.run(client.stream_answer(_generic_request(), StreamSession(), lambda text, _id: calls.append(text)))

    assert calls == ["partial"]
    assert isinstance(info.value.__cause__, httpx.ReadTimeout)
    assert response.closed and stream_client.closed


def test_multibyte_characters_split_across_reads_are_decoded_once_complete() -> None:
    response = _FakeStreamResponse([b"caf", b"\xc3", b"\xa9 ok", b" \xe2\x9c", b"\x93"])
    client = _client_with_stream(_FakeStreamClient(response))
    calls: list[str] = []

    result = asyncio.run(client.stream_answer(_generic_request(), StreamSession(), lambda text, _id: calls.append(text)))

    assert calls == ["caf", "é ok", " ", "✓"]
    assert result.final_answer == "café ok ✓"
    assert "".join(calls) == result.final_answer


def test_existing_conversation_never_reports_new_chat_id() -> None:
    response = _FakeStreamResponse([b"more"], headers={"chat_id": "other"})
    stream_client = _FakeStreamClient(response)
    client = _client_with_stream(stream_client)
    calls: list[tuple[str, str | None]] = []

    result = asyncio.run(
        client.stream_answer(
            _generic_request(conversation_id="chat-7"),
            StreamSession(),
            lambda text, chat_id: calls.append((text, chat_id)),
        )
    )

    assert result.new_chat_id is None
    assert calls == [("more", None)]
    assert stream_client.requests[0]["json"]["chat_id"] == "chat-7"  # type: ignore[index]
    assert client.telemetry.events[0][1]["chat_id"] == "chat-7"


def test_async_callbacks_are_awaited_in_order() -> None:
    response = _FakeStreamResponse([b"a", b"b", b"c"])
    client = _client_with_stream(_FakeStreamClient(response))
    seen: list[str] = []

    async def on_chunk(text: str, _chat_id: str | None) -> None:
        await asyncio.sleep(0)
        seen.append(text)

    result = asyncio.run(client.stream_answer(_generic_request(), StreamSession(), on_chunk))
    assert seen == ["a", "b", "c"]
    assert result.final_answer == "abc"


def test_failing_telemetry_sink_does_not_fail_stream() -> None:
    class _BrokenSink:
        def emit(self, event: str, **fields: object) -> None:
            raise RuntimeError("collector offline")

    client = ChatApiClient(_make_cfg(), StaticTokenProvider("tok"), telemetry=_BrokenSink())
    stream_client = _FakeStreamClient(_FakeStreamResponse([b"done"]))
    client._build_stream_client = lambda: stream_client  # type: ignore[method-assign]

    result = asyncio.run(client.stream_answer(_generic_request(), StreamSession()))
    assert result.final_answer == "done"


def test_missing_token_propagates_before_any_connection() -> None:
    built: list[object] = []
    client = ChatApiClient(_make_cfg(), StaticTokenProvider(None))
    client._build_stream_client = lambda: built.append(1) or _FakeStreamClient()  # type: ignore[method-assign]

    with pytest.raises(AuthTokenUnavailable):
        asyncio.run(client.stream_answer(_generic_request(), StreamSession()))
    assert built == []


def test_stop_stream_succeeds_independently_of_local_cancellation() -> None:
    stop_calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        stop_calls.append(request.url.path)
        return httpx.Response(200, json="stopped")

    response = _FakeStreamResponse([b"Hi", b" there"], headers={"chat_id": "chat-42"})
    client = _client_with_stream(_FakeStreamClient(response))
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    session = StreamSession()

    async def on_chunk(_text: str, _chat_id: str | None) -> None:
        # Yield so the stop request runs while the stream is still open.
        await asyncio.sleep(0)
        session.advance()

    async def _run():
        return await asyncio.gather(
            client.stream_answer(_generic_request(), session, on_chunk),
            client.stop_stream("chat-42"),
        )

    result, stopped = asyncio.run(_run())
    assert stopped == "stopped"
    assert stop_calls == ["/api/chat-service/chat/stream/stop/chat-42"]
    assert result.cancelled is True
    assert result.final_answer == "Hi"
