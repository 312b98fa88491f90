"""Fire-and-forget progress reporting for streaming clients."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from src.models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressSink:
    """Wraps an optional callback; delivery is best-effort and never raises."""

    def __init__(self, callback: Callable[[ProgressEvent], None] | None = None) -> None:
        self._callback = callback

    def emit(self, event: ProgressEvent) -> None:
        if self._callback is None:
            return
        try:
            self._callback(event)
        except Exception:
            logger.debug("Progress consumer failed; dropping %s event", event.type, exc_info=True)

    def update(self, content: str, data: dict[str, Any] | None = None) -> None:
        self.emit(ProgressEvent("progress", content, data))

    def error(self, content: str, data: dict[str, Any] | None = None) -> None:
        self.emit(ProgressEvent("error", content, data))


NULL_PROGRESS = ProgressSink()
