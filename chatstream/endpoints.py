"""URL builders for the chat backend REST API."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlencode


class Endpoints:
    """Map backend resources to fully-qualified URLs under one base URL."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")

    @property
    def health(self) -> str:
        return f"{self.base_url}/health"

    @property
    def user_upsert(self) -> str:
        return f"{self.base_url}/user-service/user"

    def terms_of_use_update(self, version: str) -> str:
        return f"{self.base_url}/user-service/user/tou/{quote(version, safe='')}"

    @property
    def user_settings(self) -> str:
        return f"{self.base_url}/user-service/user/settings"

    @property
    def language_type(self) -> str:
        return f"{self.base_url}/user-service/user/tou/language"

    def chat_mode(self, chat_mode_key: str | None = None) -> str:
        return f"{self.base_url}/chat-service/chat/mode/{chat_mode_key or ''}"

    def chat_by_id(self, chat_id: str) -> str:
        return f"{self.base_url}/chat-service/chat/id/{chat_id}"

    def chat_hide(self, chat_id: str) -> str:
        return f"{self.base_url}/chat-service/chat/hide/{chat_id}"

    @property
    def stream_start(self) -> str:
        return f"{self.base_url}/chat-service/chat/stream/start"

    def stream_stop(self, chat_id: str) -> str:
        return f"{self.base_url}/chat-service/chat/stream/stop/{chat_id}"

    @property
    def message_feedback(self) -> str:
        return f"{self.base_url}/chat-service/message/feedback"


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url_with_params(url: str, params: dict[str, Any] | None = None) -> str:
    """Append non-None params as a query string."""
    pairs = [(key, _query_value(value)) for key, value in (params or {}).items() if value is not None]
    if not pairs:
        return url
    return f"{url}?{urlencode(pairs)}"


def chat_by_id_query_params(**overrides: Any) -> dict[str, Any]:
    """Query flags for the chat-by-id endpoint, chat metadata only by default."""
    params: dict[str, Any] = {"with_chat": True, "with_messages": False}
    params.update(overrides)
    return params
