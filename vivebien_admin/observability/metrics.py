"""
Metrics Collection with Prometheus.

Exposes dashboard and data-access metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from vivebien_admin.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    REPORT = "report"
    OUTCOME = "outcome"
    CHANGE_TYPE = "change_type"
    ERROR_TYPE = "error_type"


class DashboardMetrics:
    """
    Centralized metrics for the admin dashboard.

    - HTTP requests (rate, duration, in flight)
    - Report queries (rate, duration, fail-open fallbacks)
    - Operator mutations (rate by outcome)
    - Credit ledger writes (count and amount by change type)
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("dashboard_service", "Service information")
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
            "dashboard_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "dashboard_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "dashboard_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Report Metrics
        # ====================================================================
        self.report_queries_total = Counter(
            "dashboard_report_queries_total",
            "Total report queries",
            [MetricLabels.REPORT, MetricLabels.OUTCOME],
        )

        self.report_query_duration_seconds = Histogram(
            "dashboard_report_query_duration_seconds",
            "Report query duration in seconds",
            [MetricLabels.REPORT],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.report_failures_total = Counter(
            "dashboard_report_failures_total",
            "Report queries that fell back to an empty result",
            [MetricLabels.REPORT, MetricLabels.ERROR_TYPE],
        )

        # ====================================================================
        # Mutation Metrics
        # ====================================================================
        self.mutations_total = Counter(
            "dashboard_mutations_total",
            "Total operator mutations",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.ledger_entries_total = Counter(
            "dashboard_ledger_entries_total",
            "Credit ledger entries written",
            [MetricLabels.CHANGE_TYPE],
        )

        self.ledger_credit_amount = Histogram(
            "dashboard_ledger_credit_amount",
            "Absolute credit change per ledger entry",
            buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "dashboard_errors_total",
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

    def record_report_query(self, report: str, success: bool, duration: float) -> None:
        """Record a report query and its outcome."""
        outcome = "success" if success else "fallback"
        self.report_queries_total.labels(report=report, outcome=outcome).inc()
        self.report_query_duration_seconds.labels(report=report).observe(duration)

    def record_report_failure(self, report: str, error_type: str) -> None:
        self.report_failures_total.labels(report=report, error_type=error_type).inc()

    def record_mutation(self, operation: str, outcome: str) -> None:
        """Record an operator mutation (outcome: success, rejected, error)."""
        self.mutations_total.labels(operation=operation, outcome=outcome).inc()

    def record_ledger_entry(self, change_type: str, change_amount: int) -> None:
        """Record a credit ledger write."""
        self.ledger_entries_total.labels(change_type=change_type).inc()
        self.ledger_credit_amount.observe(abs(change_amount))

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = DashboardMetrics()
