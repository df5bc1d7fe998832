"""Live counters backed by prometheus_client."""
from typing import Dict, Optional, Sequence, Union
from prometheus_client import (
    Counter, Gauge, CollectorRegistry, ProcessCollector, generate_latest
)

PING_LABELS = [
    "path", "receiver", "webhook", "routing_key",
    "extra_slack_recipient", "extra_slack_recipient_sre",
    "instance", "arg1", "arg2", "app",
]


class PrometheusCounters:
    """
    Counter capability used by the metric registry.

    Every dynamic metric becomes one prometheus_client ``Counter`` on a
    private ``CollectorRegistry``. Handles returned by :meth:`get_or_create`
    are safe to increment from many threads at once.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None, process_collector: bool = True):
        # Use a custom registry so every server instance has its own counters
        self.registry = registry if registry is not None else CollectorRegistry()
        self.counters: Dict[str, Counter] = {}

        if process_collector:
            ProcessCollector(registry=self.registry)

    def register(self, name: str, help_text: str, label_names: Sequence[str]) -> Counter:
        """
        Register a counter for a new metric family.

        Raises:
            ValueError: the name or labels are refused by prometheus_client,
                e.g. a clash with an already registered collector.
        """
        counter = Counter(
            name,
            help_text or f"Custom Metric for {name}",
            list(label_names),
            registry=self.registry
        )
        self.counters[name] = counter
        return counter

    def get_or_create(self, name: str, labels: Dict[str, str]) -> Counter:
        """
        Return the child counter for an exact label vector.

        Values are passed positionally in the sorted order the counter was
        registered with.
        """
        counter = self.counters[name]
        if not labels:
            return counter
        return counter.labels(*(labels[n] for n in sorted(labels)))

    @staticmethod
    def increment(handle: Counter, delta: Union[int, float] = 1) -> None:
        handle.inc(delta)

    @staticmethod
    def current_value(handle: Counter) -> float:
        # prometheus_client exposes no public getter for a single child
        return handle._value.get()

    def exposition(self) -> bytes:
        """Render everything on the backing registry in the Prometheus format."""
        return generate_latest(self.registry)


class SelfMetrics:
    """Self-monitoring metrics for the relay."""

    def __init__(self, registry=None, prefix="pingpong_"):
        if registry is None:
            registry = CollectorRegistry()

        self.ping_requests = Counter(
            "ping_request_count",
            "No of request handled by Ping handler (to /ping)",
            PING_LABELS,
            registry=registry
        )

        self.samples_recorded_total = Counter(
            f"{prefix}samples_recorded_total",
            "Total number of samples recorded",
            ["operation"],
            registry=registry
        )

        self.samples_rejected_total = Counter(
            f"{prefix}samples_rejected_total",
            "Total number of samples or families rejected",
            ["operation", "kind"],
            registry=registry
        )

        self.registered_families = Gauge(
            f"{prefix}registered_families",
            "Number of dynamically registered metric families",
            registry=registry
        )

    def record_ping(self, labels: Dict[str, str]):
        """Record a ping request."""
        self.ping_requests.labels(**labels).inc()

    def record_batch(self, operation: str, recorded: int, errors):
        """Record the outcome of a create/update batch."""
        if recorded:
            self.samples_recorded_total.labels(operation=operation).inc(recorded)
        for error in errors:
            self.samples_rejected_total.labels(operation=operation, kind=error.kind).inc()

    def set_registered_families(self, count: int):
        self.registered_families.set(count)
