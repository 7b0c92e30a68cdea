"""Prometheus instrumentation for the exporter itself.

Metrics exported:
- surehub_exporter_poll_cycles_total: Counter of poll cycles by outcome
- surehub_exporter_poll_duration_seconds: Histogram of poll cycle latency
- surehub_exporter_source_api_calls_total: Counter of SureHub API calls
- surehub_exporter_errors_total: Counter of errors by type and operation
- surehub_exporter_timeline_cursor: Gauge of the last reconciled timeline id

Instruments are bound to the registry passed in, so a test can build an
isolated set without touching the process-wide default registry.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

_PREFIX = "surehub_exporter"


class ExporterMetrics:
    """Self-observability instruments for one exporter process."""

    def __init__(self, registry: CollectorRegistry) -> None:
        self.poll_cycles_total = Counter(
            f"{_PREFIX}_poll_cycles_total",
            "Total number of poll cycles by outcome",
            labelnames=["status"],
            registry=registry,
        )
        self.poll_duration_seconds = Histogram(
            f"{_PREFIX}_poll_duration_seconds",
            "Duration of poll cycles in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=registry,
        )
        self.source_api_calls_total = Counter(
            f"{_PREFIX}_source_api_calls_total",
            "Total number of SureHub API calls",
            labelnames=["api_method", "status"],
            registry=registry,
        )
        self.errors_total = Counter(
            f"{_PREFIX}_errors_total",
            "Total number of errors by type",
            labelnames=["error_type", "operation"],
            registry=registry,
        )
        self.timeline_cursor = Gauge(
            f"{_PREFIX}_timeline_cursor",
            "Id of the most recently reconciled timeline item (0 until primed)",
            registry=registry,
        )

    def record_poll_cycle(self, status: str, latency: float | None = None) -> None:
        """Record the outcome of a poll cycle.

        Args:
            status: Cycle status ("success", "error")
            latency: Optional duration in seconds
        """
        self.poll_cycles_total.labels(status=status).inc()
        if latency is not None:
            self.poll_duration_seconds.observe(latency)

    @contextmanager
    def track_poll_cycle(self) -> Iterator[None]:
        """Time a poll cycle and record it as success or error."""
        start_time = time.perf_counter()
        status = "error"
        try:
            yield
            status = "success"
        finally:
            self.record_poll_cycle(status, latency=time.perf_counter() - start_time)

    def record_source_api_call(self, api_method: str, status: str) -> None:
        """Record a SureHub API call.

        Args:
            api_method: API method name (e.g., "login", "list_devices")
            status: Call status ("success", "error", "unauthorized")
        """
        self.source_api_calls_total.labels(api_method=api_method, status=status).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        self.errors_total.labels(error_type=error_type, operation=operation).inc()

    def set_timeline_cursor(self, cursor: int) -> None:
        self.timeline_cursor.set(cursor)


def get_error_type(exc: BaseException) -> str:
    """Extract a metrics-friendly error type from an exception."""
    exc_type = type(exc).__name__

    if "Status" in exc_type or "HTTP" in exc_type:
        return "http_error"
    if "Timeout" in exc_type:
        return "timeout"
    if "Transport" in exc_type or "ConnectionError" in exc_type or "ConnectError" in exc_type:
        return "connection_error"
    if "Response" in exc_type or "JSON" in exc_type or "Parse" in exc_type:
        return "parse_error"
    if "Registration" in exc_type:
        return "registration_error"
    if "Auth" in exc_type:
        return "auth_error"
    if "ValueError" in exc_type or "ValidationError" in exc_type:
        return "validation_error"

    return exc_type.lower()
