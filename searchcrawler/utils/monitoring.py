"""
Prometheus metrics for the search crawler.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class CrawlerMonitor:
    """Exports crawl progress as Prometheus metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()

        self.responses = Counter(
            'crawler_http_responses_total',
            'HTTP responses by status code',
            ['status_code'],
            registry=self.registry
        )
        self.errors = Counter(
            'crawler_errors_total',
            'Crawl errors by kind',
            ['error_type'],
            registry=self.registry
        )
        self.queue_size = Gauge(
            'crawler_queue_size',
            'Number of discovered links waiting in the queue',
            registry=self.registry
        )

    def record_status(self, status_code: int):
        self.responses.labels(status_code=str(status_code)).inc()

    def record_error(self, error_type: str):
        self.errors.labels(error_type=error_type).inc()

    def update_queue_size(self, size: int):
        self.queue_size.set(size)

    def start_server(self, port: int):
        """Start the Prometheus HTTP exporter."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

    def sample(self, name: str, **labels) -> float:
        """Current value of a metric sample, 0 if it was never recorded."""
        value = self.registry.get_sample_value(name, labels)
        return value or 0.0
