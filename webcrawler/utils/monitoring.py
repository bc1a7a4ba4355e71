"""
Monitoring and metrics collection for the web crawler system.
"""

import time
import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client import start_http_server


class MetricsCollector:
    """
    Collects crawler metrics in process and mirrors them into a private
    Prometheus registry.
    """

    def __init__(self, prometheus_port: Optional[int] = None):
        self.logger = logging.getLogger(__name__)
        self.prometheus_port = prometheus_port
        self.values: Dict[str, float] = {}

        self.registry = CollectorRegistry()
        self.prometheus_metrics = {
            'fetches_total': Counter(
                'crawler_fetches_total',
                'Fetch attempts by outcome',
                ['outcome'],
                registry=self.registry
            ),
            'errors_total': Counter(
                'crawler_errors_total',
                'URLs dropped after exhausting retries',
                registry=self.registry
            ),
            'retries_total': Counter(
                'crawler_retries_total',
                'URLs re-queued after a failed fetch',
                registry=self.registry
            ),
            'robots_denied_total': Counter(
                'crawler_robots_denied_total',
                'URLs skipped because robots.txt disallows them',
                registry=self.registry
            ),
            'response_time_seconds': Histogram(
                'crawler_response_time_seconds',
                'Response time for HTTP requests',
                registry=self.registry
            ),
            'queue_size': Gauge(
                'crawler_queue_size',
                'Number of URLs in the frontier',
                registry=self.registry
            ),
            'active_workers': Gauge(
                'crawler_active_workers',
                'Number of running fetch workers',
                registry=self.registry
            ),
        }

    def start_server(self):
        """Start the Prometheus metrics HTTP server, if a port is configured."""
        if not self.prometheus_port:
            return

        start_http_server(self.prometheus_port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")

    def increment_counter(self, name: str, amount: float = 1,
                          labels: Optional[Dict[str, str]] = None):
        """Increment a counter metric."""
        key = name
        if labels:
            key += '{' + ','.join(f'{k}={v}' for k, v in sorted(labels.items())) + '}'
        self.values[key] = self.values.get(key, 0) + amount

        metric = self.prometheus_metrics.get(name)
        if metric is not None:
            (metric.labels(**labels) if labels else metric).inc(amount)

    def set_gauge(self, name: str, value: float):
        """Set a gauge metric value."""
        self.values[name] = value
        metric = self.prometheus_metrics.get(name)
        if metric is not None:
            metric.set(value)

    def observe_histogram(self, name: str, value: float):
        """Record a histogram observation."""
        metric = self.prometheus_metrics.get(name)
        if metric is not None:
            metric.observe(value)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return dict(self.values)

    def export_text(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self.registry)


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: Optional[MetricsCollector] = None):
        self.metrics = metrics_collector or MetricsCollector()
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_fetch(self, url: str, status_code: int, response_time: float, ok: bool):
        """Record a fetch attempt."""
        outcome = 'success' if ok else 'failure'
        self.metrics.increment_counter('fetches_total', labels={'outcome': outcome})
        self.metrics.observe_histogram('response_time_seconds', response_time)

    def record_error(self, url: str):
        """Record a URL dropped after its last retry."""
        self.metrics.increment_counter('errors_total')

    def record_retry(self, url: str):
        self.metrics.increment_counter('retries_total')

    def record_robots_denied(self, url: str):
        self.metrics.increment_counter('robots_denied_total')

    def update_queue_size(self, size: int):
        """Update the queue size metric."""
        self.metrics.set_gauge('queue_size', size)

    def update_active_workers(self, count: int):
        """Update the active workers count."""
        self.metrics.set_gauge('active_workers', count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time
        fetched = current_values.get('fetches_total{outcome=success}', 0)

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'pages_per_minute': fetched / (runtime / 60) if runtime > 0 else 0,
            }
        }


def initialize_monitoring(prometheus_port: Optional[int] = None) -> CrawlerMonitor:
    """Create a monitor and start its metrics server if a port is given."""
    collector = MetricsCollector(prometheus_port)
    collector.start_server()
    return CrawlerMonitor(collector)
