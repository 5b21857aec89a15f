"""Prometheus pull exporter using prometheus_client."""
import logging
import threading
from typing import Dict, Iterator, Optional

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server
)
from prometheus_client.core import Metric as PrometheusMetric

from attrscrape.config import PrometheusExporterConfig
from attrscrape.series import MetricFamily, MetricType

logger = logging.getLogger(__name__)


class FamilyCollector:
    """prometheus_client collector serving the families of the latest poll.

    Between ``begin()`` and ``commit()`` updates go to a pending set that
    replaces the served set as a whole, so families missing from a poll
    disappear from the exposition.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self._families: Dict[str, MetricFamily] = {}
        self._pending: Optional[Dict[str, MetricFamily]] = None
        self._lock = threading.Lock()

    def begin(self):
        with self._lock:
            self._pending = {}

    def commit(self):
        with self._lock:
            if self._pending is not None:
                self._families = self._pending
                self._pending = None

    def update(self, family: MetricFamily):
        """Store a copy of ``family``, replacing any family with the same name."""
        snapshot = MetricFamily(family.identity)
        snapshot.extend(family)
        with self._lock:
            target = self._families if self._pending is None else self._pending
            target[family.name] = snapshot

    def describe(self):
        # Families appear at runtime, nothing to announce at registration
        return []

    def collect(self) -> Iterator[PrometheusMetric]:
        with self._lock:
            families = list(self._families.values())

        for family in families:
            try:
                yield self._convert(family)
            except ValueError as e:
                logger.error(f"Cannot expose family {family.name}: {e}")

    def _convert(self, family: MetricFamily) -> PrometheusMetric:
        name = f"{self.prefix}{family.name}"
        if family.type is MetricType.COUNTER and name.endswith("_total"):
            name = name[:-len("_total")]

        metric = PrometheusMetric(name, family.help or "", family.type.value, family.unit or "")
        sample_name = metric.name
        if family.type is MetricType.COUNTER:
            sample_name = f"{metric.name}_total"

        for instance in family.metrics:
            metric.add_sample(sample_name, dict(instance.labels), instance.value)
        return metric

    def families(self) -> Dict[str, MetricFamily]:
        with self._lock:
            return dict(self._families)


class PrometheusExporter:
    """Receives dispatched metric families and serves them over HTTP."""

    def __init__(self, config: PrometheusExporterConfig, start_server: bool = True):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = CollectorRegistry()
        self.collector = FamilyCollector(prefix=config.prefix)
        self.registry.register(self.collector)

        # Start HTTP server
        if config.enabled and start_server:
            self._start_server()

    def _start_server(self):
        """Start Prometheus HTTP server."""
        try:
            start_http_server(
                self.config.port,
                addr=self.config.bind_address,
                registry=self.registry
            )
            logger.info(
                f"Prometheus exporter listening on "
                f"{self.config.bind_address}:{self.config.port}/metrics"
            )
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise

    def begin_poll(self):
        self.collector.begin()

    def end_poll(self):
        """Serve exactly the families dispatched since begin_poll."""
        self.collector.commit()

    def dispatch(self, family: MetricFamily) -> int:
        """Store a family for exposition; returns 0 on success."""
        try:
            self.collector.update(family)
        except ValueError as e:
            logger.error(f"Failed to store family {family.name}: {e}")
            return -1
        return 0

    def render(self) -> str:
        """Text exposition of everything in the registry."""
        return generate_latest(self.registry).decode("utf-8")


class SelfMetrics:
    """Self-monitoring metrics for the collector."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()

        self.polls_total = Counter(
            f"{prefix}scrape_polls_total",
            "Total number of poll cycles",
            registry=registry
        )

        self.connection_failures_total = Counter(
            f"{prefix}scrape_connection_failures_total",
            "Total number of failed connects and lost connections",
            ["service_url"],
            registry=registry
        )

        self.dispatched_families_total = Counter(
            f"{prefix}scrape_dispatched_families_total",
            "Total number of metric families dispatched",
            registry=registry
        )

        self.dispatch_errors_total = Counter(
            f"{prefix}scrape_dispatch_errors_total",
            "Total number of failed dispatches",
            ["sink"],
            registry=registry
        )

        self.poll_duration_seconds = Histogram(
            f"{prefix}scrape_poll_duration_seconds",
            "Duration of each poll cycle in seconds",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry
        )

        self.connected = Gauge(
            f"{prefix}scrape_connected",
            "Whether the session is connected to its endpoint",
            ["service_url"],
            registry=registry
        )

    def record_poll(self, duration: float):
        """Record a completed poll cycle."""
        self.polls_total.inc()
        self.poll_duration_seconds.observe(duration)

    def record_connection_failures(self, service_url: str, count: int):
        if count > 0:
            self.connection_failures_total.labels(service_url=service_url).inc(count)

    def record_dispatch(self, count: int):
        self.dispatched_families_total.inc(count)

    def record_dispatch_error(self, sink: str):
        self.dispatch_errors_total.labels(sink=sink).inc()

    def set_connected(self, service_url: str, connected: bool):
        self.connected.labels(service_url=service_url).set(1 if connected else 0)
