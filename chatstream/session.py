"""Caller-owned session tokens used to cancel stale answer streams."""

from __future__ import annotations

import threading


class StreamSession:
    """Identify the currently active local conversation attempt.

    The conversation controller owns one instance and calls ``advance()``
    whenever the user moves on (new chat, switched chat). A running stream
    captured the token at start and stops at its next loop iteration once
    the token differs.
    """

    def __init__(self, initial: int = 0) -> None:
        self._lock = threading.Lock()
        self._token = initial

    @property
    def token(self) -> int:
        with self._lock:
            return self._token

    def advance(self) -> int:
        """Invalidate running streams and return the new token."""
        with self._lock:
            self._token += 1
            return self._token

    def is_current(self, token: int) -> bool:
        return self.token == token
