"""CloudWatch custom metrics for the booking agent.

Three families are published under the ``Pitchside`` namespace:

* ``External/*``  calls to LLM backends and the WhatsApp Cloud API
  (request count by status, latency by operation, errors by type)
* ``LLM/*``       prompt and completion tokens by backend and model
* ``Agent/*``     one data point set per conversation turn
  (latency, tool-loop iterations, failed turns)

Data points are buffered in memory and pushed by a background thread every
``FLUSH_INTERVAL_SECONDS``.  With ``METRICS_ENABLED`` unset the buffer is
still filled (and logged at DEBUG) but never sent, which keeps local runs
and the test-suite free of AWS calls.

>>> from src.services.metrics import metrics
>>> metrics.record_success("openai", "execute", latency_ms=812.4)
>>> metrics.record_tokens("openai", "gpt-4o-mini", prompt=1200, completion=85)
>>> metrics.record_turn(latency_ms=2300.0, iterations=2)
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "Pitchside"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit

Dimensions = list[dict[str, str]]


def _dims(**pairs: str) -> Dimensions:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


def _datum(name: str, dims: Dimensions, value: float, unit: str, at: datetime) -> dict[str, Any]:
    return {"MetricName": name, "Dimensions": dims, "Timestamp": at, "Value": value, "Unit": unit}


class MetricsClient:
    """Buffered CloudWatch publisher; one process-wide instance lives in :data:`metrics`."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    def _extend(self, *data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(data)

    # ── External calls ───────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Count a successful call and its latency."""
        now = datetime.now(UTC)
        self._extend(
            _datum("External/RequestCount", _dims(Service=service, Status="success"), 1, "Count", now),
            _datum("External/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now),
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count a failed call; latency is only published when the call got a response."""
        now = datetime.now(UTC)
        data = [
            _datum("External/RequestCount", _dims(Service=service, Status="failure"), 1, "Count", now),
            _datum("External/ErrorCount", _dims(Service=service, ErrorType=error_type), 1, "Count", now),
        ]
        if latency_ms > 0:
            data.append(
                _datum("External/Latency", _dims(Service=service, Operation=operation), latency_ms, "Milliseconds", now)
            )
        self._extend(*data)
        logger.debug("Metric: %s %s failed (%s)", service, operation, error_type)

    # ── LLM usage ────────────────────────────────────────────────────

    def record_tokens(self, service: str, model: str, *, prompt: int, completion: int) -> None:
        now = datetime.now(UTC)
        dims = _dims(Service=service, Model=model)
        self._extend(
            _datum("LLM/PromptTokens", dims, prompt, "Count", now),
            _datum("LLM/CompletionTokens", dims, completion, "Count", now),
        )

    # ── Conversation turns ───────────────────────────────────────────

    def record_turn(self, *, latency_ms: float, iterations: int, failed: bool = False) -> None:
        """One inbound message fully handled (or turned into an apology)."""
        now = datetime.now(UTC)
        data = [
            _datum("Agent/TurnLatency", [], latency_ms, "Milliseconds", now),
            _datum("Agent/ToolIterations", [], iterations, "Count", now),
        ]
        if failed:
            data.append(_datum("Agent/FailedTurns", [], 1, "Count", now))
        self._extend(*data)

    # ── Publishing ───────────────────────────────────────────────────

    def flush(self) -> int:
        """Push the buffer to CloudWatch and return how many data points were sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Dropping %d metric(s); METRICS_ENABLED is off", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
            return sent
        logger.info("Flushed %d metrics to CloudWatch", sent)
        return sent

    def close(self) -> None:
        """Stop the background thread and send whatever is left."""
        self._stop.set()
        self.flush()

    def _start_flush_thread(self) -> None:
        def _loop():
            while not self._stop.wait(FLUSH_INTERVAL_SECONDS):
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (every %ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
