from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping

from prometheus_client import Gauge

from ..metrics import MetricRegistry

Instruments = Mapping[str, Gauge]
MappingFn = Callable[[list, Instruments], None]


@dataclass(frozen=True)
class GaugeSpec:
    name: str
    documentation: str
    labelnames: tuple[str, ...] = ()


@dataclass(frozen=True)
class CollectorSpec:
    """Static description of a collector: its query, its gauges and how rows map onto them.

    Nothing is registered until ``build`` is called with a metric registry.
    """

    name: str
    query: str
    gauges: tuple[GaugeSpec, ...]
    collect: MappingFn

    def build(self, metrics: MetricRegistry) -> "Collector":
        instruments = {g.name: metrics.gauge(g.name, g.documentation, g.labelnames) for g in self.gauges}
        return Collector(name=self.name, query=self.query, instruments=instruments, collect=self.collect)


@dataclass(frozen=True)
class Collector:
    name: str
    query: str
    instruments: Instruments = field(repr=False)
    collect: MappingFn = field(repr=False)

    def map(self, rows: list) -> None:
        self.collect(rows, self.instruments)


class CollectorRegistry:
    """Insertion-ordered set of collectors, filled at startup and read on every scrape."""

    def __init__(self) -> None:
        self._collectors: dict[str, Collector] = {}
        self._sealed = False

    def register(self, collector: Collector) -> None:
        if self._sealed:
            raise RuntimeError(f"registry is sealed; cannot register {collector.name}")
        if collector.name in self._collectors:
            raise ValueError(f"duplicate collector name: {collector.name}")
        self._collectors[collector.name] = collector

    def seal(self) -> None:
        self._sealed = True

    def get(self, name: str) -> Collector:
        return self._collectors[name]

    def names(self) -> list[str]:
        return list(self._collectors)

    def items(self) -> Iterator[tuple[str, Collector]]:
        yield from self._collectors.items()

    def __iter__(self) -> Iterator[Collector]:
        return iter(self._collectors.values())

    def __len__(self) -> int:
        return len(self._collectors)

    def __contains__(self, name: object) -> bool:
        return name in self._collectors
