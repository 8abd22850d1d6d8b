"""
Shared metrics configuration for the Transaction Proxy.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        # Health check metrics
        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        # Service-specific metrics
        if self.service_name == "transactions":
            self._setup_transaction_metrics()

    def _setup_transaction_metrics(self):
        """Set up transaction proxy metrics."""
        self._metrics["transactions_served_total"] = Counter(
            "transactions_served_total",
            "Transactions considered for a response, by source",
            ["source"],
            registry=self.registry
        )

        self._metrics["cache_deserialization_failures_total"] = Counter(
            "cache_deserialization_failures_total",
            "Cached transactions dropped because they could not be decoded",
            registry=self.registry
        )

        self._metrics["upstream_records_skipped_total"] = Counter(
            "upstream_records_skipped_total",
            "Upstream array elements skipped because they are not valid transactions",
            registry=self.registry
        )

        self._metrics["cache_persist_total"] = Counter(
            "cache_persist_total",
            "Cache write attempts by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["cache_purged_entries_total"] = Counter(
            "cache_purged_entries_total",
            "Cache entries removed by age-based purge",
            registry=self.registry
        )

        self._metrics["process_memory_usage_ratio"] = Gauge(
            "process_memory_usage_ratio",
            "Process resident memory relative to the configured limit",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            if labels:
                metric = metric.labels(**labels)
            metric.inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            if labels:
                metric = metric.labels(**labels)
            metric.set(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
