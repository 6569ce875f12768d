"""Async client for the chat backend REST and streaming API."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Literal

import httpx

from .auth import StaticTokenProvider
from .config import ClientConfig
from .correlation import CorrelationTracker
from .endpoints import Endpoints, build_url_with_params, chat_by_id_query_params
from .errors import RequestFailed
from .json_helpers import to_bounded_json
from .models import ChatModeKey, StreamAnswerRequest, StreamAnswerResult
from .session import StreamSession
from .streaming import AnswerStream, ChunkCallback
from .telemetry import LoggingTelemetrySink, TelemetrySink

LOG = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST", "PATCH"]


class ChatApiClient:
    """Thin async HTTP client for the chat, user, message and stream endpoints."""

    def __init__(
        self,
        cfg: ClientConfig,
        token_provider: Callable[[], str] | None = None,
        *,
        correlation: CorrelationTracker | None = None,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        """Create a client from configuration.

        ``token_provider`` defaults to the configured static ``auth_token``.
        """
        self.cfg = cfg
        self.endpoints = Endpoints(cfg.api_base_url)
        self.token_provider = token_provider or StaticTokenProvider(cfg.auth_token)
        self.correlation = correlation or CorrelationTracker(clear_when_absent=cfg.clear_correlation_id_when_absent)
        self.telemetry = telemetry if telemetry is not None else LoggingTelemetrySink()
        self._timeout = httpx.Timeout(cfg.request_timeout_seconds, connect=cfg.connect_timeout_seconds)
        self._stream_timeout = httpx.Timeout(
            connect=cfg.connect_timeout_seconds,
            read=cfg.stream_read_timeout_seconds,
            write=cfg.request_timeout_seconds,
            pool=cfg.connect_timeout_seconds,
        )
        self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        """Close underlying HTTP resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    @property
    def correlation_id(self) -> str:
        """Correlation id of the most recently completed request."""
        return self.correlation.current()

    def _headers(self) -> dict[str, str]:
        """Build JSON, bearer-token and API-key headers for one request."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token_provider()}",
            "apikey": self.cfg.api_key or "",
        }

    def _build_stream_client(self) -> httpx.AsyncClient:
        """Create a dedicated HTTP client for one answer stream."""
        return httpx.AsyncClient(timeout=self._stream_timeout)

    async def request(self, method: HttpMethod, url: str, payload: Any = None) -> Any:
        """Run one request/response cycle and return the decoded JSON body.

        Token provider errors propagate unchanged. Everything else, including
        non-2xx statuses and undecodable bodies, raises ``RequestFailed``.
        The correlation id is recorded before the status is checked.
        """
        headers = self._headers()
        try:
            content = None
            if method != "GET" and payload is not None:
                content = json.dumps(payload)
            LOG.debug("backend request method=%s url=%s payload=%s", method, url, to_bounded_json(payload))
            response = await self._client.request(method, url, headers=headers, content=content)
            self.correlation.record_from_headers(response.headers)
            if not response.is_success:
                raise RequestFailed(f"HTTP status {response.status_code}", status_code=response.status_code)
            return json.loads(response.text)
        except RequestFailed:
            raise
        except Exception as exc:
            raise RequestFailed(f"An error occurred during the request: {exc}") from exc

    async def get(self, url: str) -> Any:
        return await self.request("GET", url)

    async def post(self, url: str, payload: Any = None) -> Any:
        return await self.request("POST", url, payload)

    async def patch(self, url: str, payload: Any = None) -> Any:
        return await self.request("PATCH", url, payload)

    async def get_health(self) -> Any:
        return await self.post(self.endpoints.health)

    async def post_user(self) -> dict[str, Any]:
        """Create the current user if needed and return it."""
        return await self.post(self.endpoints.user_upsert)

    async def post_terms_of_use(self, version: str) -> str:
        """Accept the terms of use with the given version."""
        return await self.post(self.endpoints.terms_of_use_update(version))

    async def get_user_settings(self) -> dict[str, Any]:
        return await self.get(self.endpoints.user_settings)

    async def post_user_settings(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self.post(self.endpoints.user_settings, payload)

    async def post_language_type(self, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.post(self.endpoints.language_type, payload)

    async def get_chats(self, chat_mode_key: ChatModeKey | str | None = None) -> list[dict[str, Any]]:
        """List chat metadata, optionally restricted to one mode."""
        if isinstance(chat_mode_key, ChatModeKey):
            chat_mode_key = chat_mode_key.value
        return await self.get(self.endpoints.chat_mode(chat_mode_key))

    async def get_chat_messages(self, chat_id: str) -> list[dict[str, Any]]:
        """Fetch the messages of a chat without its metadata."""
        url = build_url_with_params(
            self.endpoints.chat_by_id(chat_id),
            chat_by_id_query_params(with_chat=False, with_messages=True),
        )
        return await self.get(url)

    async def get_chat_metadata_and_messages(self, chat_id: str) -> dict[str, Any]:
        url = build_url_with_params(
            self.endpoints.chat_by_id(chat_id),
            chat_by_id_query_params(with_chat=True, with_messages=True),
        )
        return await self.get(url)

    async def send_chat_message_feedback(
        self,
        message_id: str,
        feedback: str,
        comment_feedback: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"message_id": message_id, "feedback": feedback}
        if comment_feedback is not None:
            payload["comment_feedback"] = comment_feedback
        return await self.patch(self.endpoints.message_feedback, payload)

    async def hide_chat(self, chat_id: str) -> dict[str, Any]:
        return await self.patch(self.endpoints.chat_hide(chat_id))

    async def stop_stream(self, chat_id: str) -> str | None:
        """Ask the backend to stop generating the answer for one chat.

        This does not touch any local stream; pair it with
        ``StreamSession.advance()`` to also stop reading.
        """
        return await self.post(self.endpoints.stream_stop(chat_id))

    async def stream_answer(
        self,
        request: StreamAnswerRequest,
        session: StreamSession,
        on_chunk: ChunkCallback | None = None,
        *,
        session_token: int | None = None,
    ) -> StreamAnswerResult:
        """Stream one answer, calling ``on_chunk(text, new_chat_id)`` per decoded chunk.

        ``session_token`` defaults to the session's token at call time. Once the
        session advances past it, the stream stops before its next read and
        returns what was received so far. Failures raise ``StreamFailed``.
        """
        token = session.token if session_token is None else session_token
        headers = self._headers()
        headers["Connection"] = "close"
        stream = AnswerStream(
            client=self._build_stream_client(),
            url=self.endpoints.stream_start,
            headers=headers,
            request=request,
            session=session,
            session_token=token,
            on_chunk=on_chunk,
            correlation=self.correlation,
            telemetry=self.telemetry,
        )
        return await stream.run()
