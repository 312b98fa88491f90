"""CloudWatch custom metrics for outbound calls and tool dispatch.

Every adapter in ``src/services`` wraps its HTTP calls in
:meth:`MetricsClient.timed`, so each external system (Google Calendar,
Gmail, People, Vapi, Tavily, Anthropic) reports request count, latency
and error type under the ``CalendarAssistant`` namespace.

Points are buffered in memory and pushed by a daemon thread once a
minute.  Unless ``METRICS_ENABLED=true`` nothing leaves the process; the
points are only logged at DEBUG level.

>>> from src.services.metrics import metrics
>>> with metrics.timed("google_calendar", "GET /events"):
...     ...
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator

logger = logging.getLogger(__name__)

NAMESPACE = "CalendarAssistant"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit


def _point(name: str, dimensions: dict[str, str], value: float, unit: str) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Buffered CloudWatch publisher."""

    def __init__(self, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Recording ────────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        self._extend(
            _point("ExternalAPI/RequestCount", {"Service": service, "Status": "success"}, 1, "Count"),
            _point("ExternalAPI/Latency", {"Service": service, "Operation": operation}, latency_ms, "Milliseconds"),
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(self, service: str, operation: str, error_type: str, latency_ms: float = 0) -> None:
        points = [
            _point("ExternalAPI/RequestCount", {"Service": service, "Status": "failure"}, 1, "Count"),
            _point("ExternalAPI/ErrorCount", {"Service": service, "ErrorType": error_type}, 1, "Count"),
        ]
        if latency_ms > 0:
            points.append(
                _point("ExternalAPI/Latency", {"Service": service, "Operation": operation}, latency_ms, "Milliseconds")
            )
        self._extend(*points)
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms", service, operation, error_type, latency_ms,
        )

    def record_count(self, name: str, value: float = 1, **dimensions: str) -> None:
        """Record an arbitrary counter, e.g. tool dispatches or guard rejections."""
        self._extend(_point(name, dimensions, value, "Count"))

    @contextmanager
    def timed(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block and record success or failure.

        The exception, if any, is re-raised after being counted; its class
        name becomes the ``ErrorType`` dimension.
        """
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            self.record_failure(service, operation, type(exc).__name__, (time.perf_counter() - t0) * 1000)
            raise
        self.record_success(service, operation, (time.perf_counter() - t0) * 1000)

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Push buffered points to CloudWatch and return how many were sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _extend(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
