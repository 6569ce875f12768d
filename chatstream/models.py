"""Request and result types for streamed answers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class ChatModeKey(str, Enum):
    """Conversation mode selecting which optional key is meaningful."""

    GENERIC = "generic"
    DOCUMENTS = "documents"


class StreamAnswerRequest(BaseModel):
    """Validated input for one streamed answer.

    ``conversation_id`` None asks the backend to create a new chat.
    """

    model_config = ConfigDict(frozen=True)

    conversation_id: str | None = None
    user_prompt: str
    chat_mode_key: ChatModeKey
    language_model_key: str | None = None
    knowledge_base_key: str | None = None

    @field_validator("user_prompt")
    @classmethod
    def _require_prompt(cls, value: str) -> str:
        if not value:
            raise ValueError("user_prompt must not be empty")
        return value

    @model_validator(mode="after")
    def _require_mode_key(self) -> "StreamAnswerRequest":
        """Each mode needs the key it actually uses."""
        if self.chat_mode_key is ChatModeKey.GENERIC and not self.language_model_key:
            raise ValueError("language_model_key is required in generic mode")
        if self.chat_mode_key is ChatModeKey.DOCUMENTS and not self.knowledge_base_key:
            raise ValueError("knowledge_base_key is required in documents mode")
        return self

    def to_payload(self) -> dict[str, Any]:
        """Render the wire body, blanking the key the mode does not use."""
        generic = self.chat_mode_key is ChatModeKey.GENERIC
        documents = self.chat_mode_key is ChatModeKey.DOCUMENTS
        return {
            "chat_id": self.conversation_id,
            "user_prompt": self.user_prompt,
            "chat_mode_key": self.chat_mode_key.value,
            "language_model_key": (self.language_model_key or "") if generic else "",
            "knowledge_base_key": (self.knowledge_base_key or "") if documents else "",
        }


@dataclass(frozen=True)
class StreamAnswerResult:
    """Outcome of a completed or cancelled stream."""

    user_prompt: str
    final_answer: str
    new_chat_id: str | None = None
    cancelled: bool = False
