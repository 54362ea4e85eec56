import logging
import time
from dataclasses import dataclass, field

from .collectors.base import Collector, CollectorRegistry
from .metrics import MetricRegistry
from .tracer import mark_failed, start_span_async

log = logging.getLogger("exporter")
queries_log = logging.getLogger("queries")


class CollectorError(Exception):
    def __init__(self, collector: str, cause: BaseException):
        super().__init__(f"{collector}: {cause}")
        self.collector = collector
        self.cause = cause


class CollectorQueryError(CollectorError):
    """The collector's query failed on the server or in transport."""


class CollectorMappingError(CollectorError):
    """The rows came back but the collector could not turn them into samples."""


@dataclass
class ScrapeOutcome:
    # a scrape that got a connection always completes; failures are per collector
    succeeded: list[str] = field(default_factory=list)
    failed: list[CollectorError] = field(default_factory=list)
    duration: float = 0.0

    @property
    def failed_names(self) -> list[str]:
        return [err.collector for err in self.failed]


class Orchestrator:
    """Runs every registered collector, one after another, on a single session."""

    def __init__(self, collectors: CollectorRegistry, metrics: MetricRegistry):
        self.collectors = collectors
        self.collector_success = metrics.gauge(
            "mssql_exporter_collector_success",
            "Whether the collector's last run succeeded (1) or failed (0)",
            ("collector",),
        )
        self.collector_duration = metrics.gauge(
            "mssql_exporter_collector_duration_seconds",
            "Duration of the collector's last run in seconds",
            ("collector",),
        )
        self.scrape_duration = metrics.gauge(
            "mssql_exporter_scrape_duration_seconds",
            "Duration of the last completed collection pass in seconds",
        )

    async def run(self, session) -> ScrapeOutcome:
        outcome = ScrapeOutcome()
        started = time.perf_counter()
        for name, collector in self.collectors.items():
            collector_started = time.perf_counter()
            async with start_span_async(f"collect {name}", collector=name) as span:
                try:
                    await self._measure(session, collector)
                except CollectorError as err:
                    mark_failed(span, err.cause)
                    outcome.failed.append(err)
                    self.collector_success.labels(collector=name).set(0)
                else:
                    outcome.succeeded.append(name)
                    self.collector_success.labels(collector=name).set(1)
            self.collector_duration.labels(collector=name).set(time.perf_counter() - collector_started)
        outcome.duration = time.perf_counter() - started
        self.scrape_duration.set(outcome.duration)
        if outcome.failed:
            log.warning(
                "scrape completed with %d failed collector(s)", len(outcome.failed),
                extra={"failed": outcome.failed_names},
            )
        return outcome

    async def _measure(self, session, collector: Collector) -> None:
        name = collector.name
        queries_log.debug("executing metric %s query: %s", name, collector.query)
        try:
            rows = await session.execute(collector.query)
        except Exception as exc:
            log.error("error executing query for metric %s: %s", name, exc, extra={"collector": name})
            raise CollectorQueryError(name, exc) from exc

        queries_log.debug("retrieved metric %s rows (%d): %r", name, len(rows), rows)
        if not rows:
            return
        try:
            collector.map(rows)
        except Exception as exc:
            log.error("error processing metric %s: %s", name, exc, extra={"collector": name})
            raise CollectorMappingError(name, exc) from exc
