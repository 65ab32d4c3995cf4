"""
Prometheus metrics for the watcher.

``metrics_registry`` is a process-wide singleton. Until it is initialized with
``metrics.enabled: true`` every recording call returns without touching
prometheus_client, so library code can record unconditionally.
"""

import threading
from typing import Literal, NamedTuple, Optional, Union

from prometheus_client import Counter, Gauge, Histogram, start_http_server
from prometheus_client.core import CollectorRegistry

from market_watcher.utils.config_loader import MetricsConfig
from market_watcher.utils.logger import LOGGER as logger

METRIC_PREFIX = "market_watcher_"

Metric = Union[Counter, Gauge, Histogram]


class MetricDefinition(NamedTuple):
    name: str
    type: Literal["counter", "gauge", "histogram"]
    description: str
    labels: tuple[str, ...] = ()


METRIC_DEFINITIONS: tuple[MetricDefinition, ...] = (
    MetricDefinition("poll_cycles_total", "counter", "Completed poll cycles", ("status",)),
    MetricDefinition("poll_cycle_duration_seconds", "histogram", "Wall-clock duration of a poll cycle"),
    MetricDefinition("poll_triggers_skipped_total", "counter", "Triggers skipped because a cycle was running"),
    MetricDefinition("symbol_updates_total", "counter", "Per-symbol update outcomes", ("symbol", "status")),
    MetricDefinition(
        "provider_requests_total", "counter", "Market-data provider requests", ("endpoint", "status")
    ),
    MetricDefinition(
        "provider_request_duration_seconds", "histogram", "Market-data provider request latency", ("endpoint",)
    ),
    MetricDefinition("deliveries_total", "counter", "Message deliveries to recipients", ("status",)),
    MetricDefinition("subscribers", "gauge", "Current number of subscribed recipients"),
    MetricDefinition("commands_total", "counter", "Chat commands received", ("command",)),
)


class MetricsRegistry:
    _instance: Optional["MetricsRegistry"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "MetricsRegistry":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._initialized = False
                instance._metrics_config = None
                instance._metrics = {}
                cls._instance = instance
        return cls._instance

    def initialize(self, metrics_config: Optional[MetricsConfig]) -> None:
        """Build the collectors once; repeated calls keep the first configuration."""
        if self._initialized:
            return

        self._metrics_config = metrics_config
        self._registry = CollectorRegistry()
        self._metrics: dict[str, Metric] = {}
        self._server_started = False

        if self.is_enabled():
            for definition in METRIC_DEFINITIONS:
                self._metrics[definition.name] = self._build(definition)
            logger.info(f"Metrics enabled: {len(self._metrics)} collectors registered")
        else:
            logger.info("Metrics disabled; recording calls are no-ops")

        self._initialized = True

    def _build(self, definition: MetricDefinition) -> Metric:
        full_name = METRIC_PREFIX + definition.name
        labels = list(definition.labels)
        if definition.type == "counter":
            return Counter(full_name, definition.description, labels, registry=self._registry)
        if definition.type == "gauge":
            return Gauge(full_name, definition.description, labels, registry=self._registry)
        buckets = self._metrics_config.default_histogram_buckets if self._metrics_config else Histogram.DEFAULT_BUCKETS
        return Histogram(full_name, definition.description, labels, buckets=buckets, registry=self._registry)

    def start_metrics_server(self, port: Optional[int] = None) -> None:
        """Expose ``/metrics`` over HTTP. Bind failures are logged, not raised."""
        if not self.is_enabled():
            logger.info("Metrics exporter not started (metrics disabled)")
            return
        if self._server_started:
            logger.warning("Metrics exporter is already running")
            return

        bind_port = port or self._metrics_config.endpoint_port
        try:
            start_http_server(bind_port, registry=self._registry)
        except OSError as e:
            logger.error(f"Could not bind metrics exporter to port {bind_port}: {e}")
            return
        self._server_started = True
        logger.info(f"Metrics exporter listening on :{bind_port}")

    def is_enabled(self) -> bool:
        config = self._metrics_config
        return bool(config and config.enabled)

    def _child(self, metric_name: str, kind: type, labels: Optional[dict[str, str]]):
        metric = self._metrics.get(metric_name)
        if not isinstance(metric, kind):
            logger.warning(f"No {kind.__name__.lower()} named '{metric_name}' is registered")
            return None
        return metric.labels(**labels) if labels else metric

    def increment_counter(self, metric_name: str, labels: Optional[dict[str, str]] = None, value: float = 1.0) -> None:
        if self.is_enabled():
            child = self._child(metric_name, Counter, labels)
            if child is not None:
                child.inc(value)

    def set_gauge(self, metric_name: str, value: float, labels: Optional[dict[str, str]] = None) -> None:
        if self.is_enabled():
            child = self._child(metric_name, Gauge, labels)
            if child is not None:
                child.set(value)

    def observe_histogram(self, metric_name: str, value: float, labels: Optional[dict[str, str]] = None) -> None:
        if self.is_enabled():
            child = self._child(metric_name, Histogram, labels)
            if child is not None:
                child.observe(value)

    def record_poll_cycle(self, success: bool, duration: float) -> None:
        if not self.is_enabled():
            return

        self.increment_counter("poll_cycles_total", {"status": "success" if success else "partial"})
        self.observe_histogram("poll_cycle_duration_seconds", duration)

    def record_skipped_trigger(self) -> None:
        self.increment_counter("poll_triggers_skipped_total")

    def record_symbol_update(self, symbol: str, status: str) -> None:
        self.increment_counter("symbol_updates_total", {"symbol": symbol, "status": status})

    def record_provider_request(self, endpoint: str, success: bool, duration: float) -> None:
        if not self.is_enabled():
            return

        self.increment_counter("provider_requests_total", {"endpoint": endpoint, "status": "success" if success else "error"})
        self.observe_histogram("provider_request_duration_seconds", duration, {"endpoint": endpoint})

    def record_deliveries(self, delivered: int, failed: int) -> None:
        if not self.is_enabled():
            return

        if delivered:
            self.increment_counter("deliveries_total", {"status": "delivered"}, value=float(delivered))
        if failed:
            self.increment_counter("deliveries_total", {"status": "failed"}, value=float(failed))

    def record_subscriber_count(self, count: int) -> None:
        self.set_gauge("subscribers", float(count))

    def record_command(self, command: str) -> None:
        self.increment_counter("commands_total", {"command": command})


metrics_registry = MetricsRegistry()
