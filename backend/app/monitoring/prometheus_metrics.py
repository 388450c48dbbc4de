"""
Prometheus metrics module for the CleanOps backend.

Service timings come from @measure_operation; the payment hold counters are
the operator-visible channel for hold outcomes that never fail a booking
operation (skips, provider failures, duplicate authorizations).
"""

from threading import Lock
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Private registry: /metrics exposes only CleanOps series
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "cleanops_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "cleanops_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "cleanops_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

payment_holds_total = Counter(
    "cleanops_payment_holds_total",
    "Payment hold placement attempts by outcome",
    ["outcome"],  # placed | skipped | failed | released | release_failed | duplicate
    registry=REGISTRY,
)

hold_sweep_runs_total = Counter(
    "cleanops_hold_sweep_runs_total",
    "Payment hold sweep runs",
    ["status"],  # completed | partial | disabled | error
    registry=REGISTRY,
)

series_changes_total = Counter(
    "cleanops_series_changes_total",
    "Booking series instances touched by materialization and reconciliation",
    ["change"],  # created | shifted | removed | updated
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Recording helpers and the cached exposition payload for /metrics."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Observe one timed service call; errors are also counted by exception type."""
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        with PrometheusMetrics._cache_lock:
            if PrometheusMetrics._cache_payload is None:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = None

    # Domain helpers
    @staticmethod
    def inc_payment_hold(outcome: str) -> None:
        payment_holds_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_hold_sweep_run(status: str) -> None:
        hold_sweep_runs_total.labels(status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_series_changes(change: str, count: int) -> None:
        if count > 0:
            series_changes_total.labels(change=change).inc(count)
            PrometheusMetrics._invalidate_cache()


# Singleton instance
prometheus_metrics = PrometheusMetrics()
