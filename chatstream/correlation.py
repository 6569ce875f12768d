"""Latest-value store for backend correlation ids."""

from __future__ import annotations

import threading
from collections.abc import Mapping

CORRELATION_ID_HEADER = "x-correlation-id"


class CorrelationTracker:
    """Thread-safe single slot holding the most recent correlation id.

    Every completed request writes to it, so concurrent requests race and the
    last writer wins. The value is informational only.
    """

    def __init__(self, *, clear_when_absent: bool = True, header_name: str = CORRELATION_ID_HEADER) -> None:
        self._lock = threading.Lock()
        self._value = ""
        self.clear_when_absent = clear_when_absent
        self.header_name = header_name

    def current(self) -> str:
        """Return the latest recorded id, or an empty string."""
        with self._lock:
            return self._value

    def set(self, value: str) -> None:
        with self._lock:
            self._value = value

    def record_from_headers(self, headers: Mapping[str, str]) -> None:
        """Record the correlation id carried by response headers.

        Header lookup is case-insensitive for ``httpx.Headers`` and plain dicts.
        A missing header resets the value to "" unless ``clear_when_absent``
        is false, in which case the previous value is kept.
        """
        value = _get_header(headers, self.header_name)
        if value is None:
            if self.clear_when_absent:
                self.set("")
            return
        self.set(value)


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return str(value)
    lowered = name.lower()
    for key, item in headers.items():
        if str(key).lower() == lowered:
            return str(item)
    return None
