"""
Monitoring and metrics collection for the polite crawler.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import start_http_server


@dataclass
class MetricPoint:
    """Individual metric data point."""
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """Metric container with history."""
    name: str
    description: str
    metric_type: str  # counter, gauge, histogram
    points: List[MetricPoint] = field(default_factory=list)
    current_value: float = 0.0


class MetricsCollector:
    """Collects and manages crawler metrics."""

    MAX_POINTS = 1000

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.metrics: Dict[str, Metric] = {}
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.prometheus_registry: Optional[CollectorRegistry] = None
        self.prometheus_metrics: Dict[str, Any] = {}

        if self.enable_prometheus:
            self._setup_prometheus()

    def _setup_prometheus(self):
        """Setup Prometheus metrics."""
        self.prometheus_registry = CollectorRegistry()

        self.prometheus_metrics = {
            'urls_fetched_total': Counter(
                'crawler_urls_fetched_total',
                'Total number of fetch attempts by outcome',
                ['status'],
                registry=self.prometheus_registry
            ),
            'pages_saved_total': Counter(
                'crawler_pages_saved_total',
                'Total number of responses saved to the final directory',
                registry=self.prometheus_registry
            ),
            'links_offered_total': Counter(
                'crawler_links_offered_total',
                'Total number of extracted links offered to the frontier',
                registry=self.prometheus_registry
            ),
            'errors_total': Counter(
                'crawler_errors_total',
                'Total number of crawl errors',
                ['error_type'],
                registry=self.prometheus_registry
            ),
            'response_time_seconds': Histogram(
                'crawler_response_time_seconds',
                'Time spent on one fetch including redirects',
                registry=self.prometheus_registry
            ),
            'queue_size': Gauge(
                'crawler_queue_size',
                'Number of URLs in the frontier',
                registry=self.prometheus_registry
            ),
            'bytes_downloaded_total': Counter(
                'crawler_bytes_downloaded_total',
                'Total bytes saved',
                registry=self.prometheus_registry
            )
        }

        self.logger.info("Prometheus metrics initialized")

    def start_prometheus_server(self):
        """Start Prometheus metrics HTTP server."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def record_metric(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                      description: str = "", metric_type: str = "gauge",
                      increment: Optional[float] = None):
        """Record a metric value. Counters pass the delta in `increment`."""
        labels = labels or {}

        if name not in self.metrics:
            self.metrics[name] = Metric(
                name=name,
                description=description,
                metric_type=metric_type
            )

        metric = self.metrics[name]
        metric.points.append(MetricPoint(timestamp=time.time(), value=value, labels=labels))
        metric.current_value = value

        if len(metric.points) > self.MAX_POINTS:
            metric.points = metric.points[-self.MAX_POINTS:]

        if self.enable_prometheus and name in self.prometheus_metrics:
            prom_metric = self.prometheus_metrics[name]
            if labels:
                prom_metric = prom_metric.labels(**labels)

            if metric_type == "counter":
                prom_metric.inc(increment if increment is not None else 1)
            elif metric_type == "histogram":
                prom_metric.observe(value)
            else:
                prom_metric.set(value)

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None,
                          description: str = "", amount: float = 1):
        """Increment a counter metric."""
        current_value = 0
        if name in self.metrics:
            current_value = self.metrics[name].current_value

        self.record_metric(name, current_value + amount, labels, description, "counter",
                           increment=amount)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  description: str = ""):
        """Set a gauge metric value."""
        self.record_metric(name, value, labels, description, "gauge")

    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Record a histogram observation."""
        self.record_metric(name, value, labels, description, "histogram")

    def get_metric(self, name: str) -> Optional[Metric]:
        """Get a metric by name."""
        return self.metrics.get(name)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return {name: metric.current_value for name, metric in self.metrics.items()}


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_fetch(self, status: str, response_time: float):
        """Record one fetch attempt and its outcome."""
        self.metrics.increment_counter('urls_fetched_total', {'status': status},
                                       'Fetch attempts by outcome')
        self.metrics.observe_histogram('response_time_seconds', response_time,
                                       description='Fetch time')

    def record_page_saved(self, content_size: int):
        """Record a saved data file."""
        self.metrics.increment_counter('pages_saved_total', description='Pages saved')
        self.metrics.increment_counter('bytes_downloaded_total', description='Bytes saved',
                                       amount=content_size)

    def record_links_offered(self, count: int):
        """Record links handed to the frontier by the extractor."""
        if count:
            self.metrics.increment_counter('links_offered_total', description='Links offered',
                                           amount=count)

    def record_error(self, error_type: str):
        """Record an error event."""
        self.metrics.increment_counter('errors_total', {'error_type': error_type}, 'Crawl errors')

    def update_queue_size(self, size: int):
        """Update the queue size metric."""
        self.metrics.set_gauge('queue_size', size, description='URLs in frontier')

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'pages_per_minute': current_values.get('pages_saved_total', 0) / (runtime / 60) if runtime > 0 else 0,
            }
        }


def initialize_monitoring(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Create the monitor and start the Prometheus exporter when enabled."""
    metrics_collector = MetricsCollector(enable_prometheus, prometheus_port)
    metrics_collector.start_prometheus_server()
    return CrawlerMonitor(metrics_collector)
