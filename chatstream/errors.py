"""Exception types raised by the chat backend client."""

from __future__ import annotations


class ChatApiError(Exception):
    """Base class for chat backend client errors."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RequestFailed(ChatApiError):
    """Raised when a non-streaming request fails for any reason.

    ``status_code`` is set when the backend answered with a non-success
    status. Transport faults and undecodable bodies carry ``None`` and
    chain the original exception as ``__cause__``.
    """


class StreamFailed(ChatApiError):
    """Raised when a streaming answer cannot be opened or read.

    No partial answer is attached; a cancelled stream is not an error.
    """


class AuthTokenUnavailable(ChatApiError):
    """Raised by token providers that cannot supply a bearer token."""
