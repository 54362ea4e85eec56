from typing import Iterable, Sequence

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest


class MetricRegistry:
    """Holds every gauge the exporter publishes.

    One instance is built at startup and handed to each collector, so tests can
    work against a private registry instead of the process-wide default one.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry(auto_describe=True)

    def gauge(self, name: str, documentation: str, labelnames: Sequence[str] = ()) -> Gauge:
        return Gauge(name, documentation, labelnames=tuple(labelnames), registry=self.registry)

    def serialize(self) -> bytes:
        """Return the latest metrics payload (Prometheus text format)."""
        return generate_latest(self.registry)

    def serialize_only(self, names: Iterable[str]) -> bytes:
        return generate_latest(self.registry.restricted_registry(list(names)))

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        return self.registry.get_sample_value(name, labels)
