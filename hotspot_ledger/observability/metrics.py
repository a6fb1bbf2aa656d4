"""
Metrics Collection with Prometheus.

Exposes ledger, reconciliation and device metrics for monitoring.
"""

import time
from decimal import Decimal
from enum import Enum
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, Info

from hotspot_ledger.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    KIND = "kind"
    OUTCOME = "outcome"
    SOURCE = "source"
    REASON = "reason"
    CATEGORY = "category"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the Hotspot Ledger API.

    Covers:
    - HTTP requests (rate, duration)
    - Ledger appends and balance reads
    - Reconciliations by source and fallback reason
    - Device requests by operation and outcome
    - Notifications and price quotes
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("hotspot_ledger_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "hotspot_ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "hotspot_ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "hotspot_ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_appends_total = Counter(
            "hotspot_ledger_appends_total",
            "Total ledger append attempts",
            [MetricLabels.KIND, MetricLabels.OUTCOME],
        )

        self.ledger_append_amount = Histogram(
            "hotspot_ledger_append_amount",
            "Appended transaction amounts in currency units",
            [MetricLabels.KIND],
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000),
        )

        self.balance_reads_total = Counter(
            "hotspot_ledger_balance_reads_total",
            "Total balance folds computed",
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliations_total = Counter(
            "hotspot_ledger_reconciliations_total",
            "Total reconciliations by served source",
            [MetricLabels.SOURCE, MetricLabels.REASON],
        )

        # ====================================================================
        # Device Metrics
        # ====================================================================
        self.device_requests_total = Counter(
            "hotspot_ledger_device_requests_total",
            "Total requests sent to hotspot controllers",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.device_request_duration_seconds = Histogram(
            "hotspot_ledger_device_request_duration_seconds",
            "Hotspot controller request duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Notification / Pricing Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "hotspot_ledger_notifications_total",
            "Total notification attempts",
            [MetricLabels.OUTCOME],
        )

        self.price_quotes_total = Counter(
            "hotspot_ledger_price_quotes_total",
            "Total prices computed",
            [MetricLabels.CATEGORY, "discounted"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "hotspot_ledger_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_append(self, kind: str, success: bool, amount: Decimal | None = None) -> None:
        """Record ledger append metrics."""
        self.ledger_appends_total.labels(
            kind=kind, outcome="success" if success else "failure"
        ).inc()
        if success and amount is not None:
            self.ledger_append_amount.labels(kind=kind).observe(float(amount))

    def record_balance_read(self) -> None:
        """Record one balance fold."""
        self.balance_reads_total.inc()

    def record_reconciliation(self, source: str, reason: str | None) -> None:
        """Record reconciliation outcome."""
        self.reconciliations_total.labels(source=source, reason=reason or "none").inc()

    def record_device_request(self, operation: str, outcome: str, duration: float) -> None:
        """Record hotspot controller request metrics."""
        self.device_requests_total.labels(operation=operation, outcome=outcome).inc()
        self.device_request_duration_seconds.labels(operation=operation).observe(duration)

    def record_notification(self, delivered: bool) -> None:
        """Record notification outcome."""
        self.notifications_total.labels(outcome="delivered" if delivered else "failed").inc()

    def record_price_quote(self, category: str, discounted: bool) -> None:
        """Record price computation."""
        self.price_quotes_total.labels(category=category, discounted=str(discounted)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/vouchers", "POST") as tracker:
            # ... process request
            tracker.set_status_code(201)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        """Start tracking."""
        self.start_time = time.time()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()


def get_metrics_handler() -> Callable[[], bytes]:
    """Get Prometheus metrics handler for FastAPI."""
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
