"""CloudWatch custom metrics with background batching.

Records a count, a latency and (on failure) an error type for every call
the backend makes to something slow or external: the LLM provider
(``anthropic``) and the lookup queries behind each tool (``database``).

* Data points accumulate in a thread-safe buffer.
* With ``METRICS_ENABLED=true`` a daemon thread pushes the buffer to
  CloudWatch every ``FLUSH_INTERVAL_SECONDS`` and once more at exit.
* Otherwise nothing is buffered; data points are only logged at DEBUG level.

Usage
-----
>>> from src.services.metrics import metrics
>>> with metrics.track("anthropic", "chatbot:router"):
...     llm.invoke(messages)
"""

from __future__ import annotations

import atexit
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from src.config import METRICS_ENABLED

logger = logging.getLogger(__name__)

NAMESPACE = "SupportDesk"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch PutMetricData limit


def _datum(name: str, value: float, unit: str, dimensions: dict[str, str]) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Buffered CloudWatch publisher."""

    def __init__(self, enabled: bool = METRICS_ENABLED) -> None:
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
            _datum("Calls/Count", 1, "Count", {"Service": service, "Status": "success"}),
            _datum("Calls/Latency", latency_ms, "Milliseconds", {"Service": service, "Operation": operation}),
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        data = [
            _datum("Calls/Count", 1, "Count", {"Service": service, "Status": "failure"}),
            _datum("Calls/Errors", 1, "Count", {"Service": service, "ErrorType": error_type}),
        ]
        if latency_ms > 0:
            data.append(
                _datum("Calls/Latency", latency_ms, "Milliseconds", {"Service": service, "Operation": operation})
            )
        self._extend(*data)
        logger.debug("Metric: %s %s failed (%s) %.1fms", service, operation, error_type, latency_ms)

    @contextmanager
    def track(self, service: str, operation: str) -> Iterator[None]:
        """Time the wrapped block and record success or failure.

        Exceptions are recorded under their class name and re-raised.
        """
        t0 = time.perf_counter()
        try:
            yield
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self.record_failure(service, operation, error_type=type(exc).__name__, latency_ms=elapsed)
            raise
        self.record_success(service, operation, latency_ms=(time.perf_counter() - t0) * 1000)

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered data points to CloudWatch.  Returns the count sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
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

    def _extend(self, *data: dict[str, Any]) -> None:
        if not self._enabled:
            return
        with self._lock:
            self._buffer.extend(data)

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
