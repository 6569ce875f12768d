"""Fire-and-forget telemetry sinks."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .json_helpers import to_bounded_json

LOG = logging.getLogger(__name__)

ANSWER_COMPLETE_EVENT = "answer-complete"


class TelemetrySink(Protocol):
    """Receiver for client activity events."""

    def emit(self, event: str, **fields: Any) -> None:
        """Record one event. Implementations should not block."""


class LoggingTelemetrySink:
    """Write events to the log at INFO level."""

    def emit(self, event: str, **fields: Any) -> None:
        LOG.info("telemetry event=%s fields=%s", event, to_bounded_json(fields))


class RecordingTelemetrySink:
    """Keep emitted events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, **fields: Any) -> None:
        self.events.append((event, dict(fields)))


def emit_safely(sink: TelemetrySink | None, event: str, **fields: Any) -> None:
    """Emit an event, logging instead of raising when the sink fails."""
    if sink is None:
        return
    try:
        sink.emit(event, **fields)
    except Exception as exc:
        LOG.warning("telemetry sink failed event=%s error=%s", event, exc)
