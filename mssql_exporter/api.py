import logging
from typing import Any

from fastapi import FastAPI
from fastapi.responses import RedirectResponse, Response

from . import __version__
from .collectors import LIVENESS_COLLECTOR, LIVENESS_GAUGE, CollectorRegistry, build_registry
from .config import Config
from .db import ConnectionManager, DatabaseConnectionError
from .metrics import MetricRegistry
from .schemas import Health, VersionInfo
from .scrape import Orchestrator
from .tracer import mark_failed, start_span_async

log = logging.getLogger("exporter")

APP_NAME = "mssql-exporter"


def header_safe(message: str) -> str:
    """Collapse an error message into a single latin-1 line usable as a header value."""
    line = " ".join(str(message).split())
    return line.encode("latin-1", "replace").decode("latin-1")


def create_app(
    cfg: Config,
    metrics: MetricRegistry | None = None,
    collectors: CollectorRegistry | None = None,
    connections: Any = None,
) -> FastAPI:
    """Wire the scrape pipeline into a FastAPI app.

    Every piece can be injected; by default gauges live in a fresh registry and
    sessions come from ``ConnectionManager`` using the real driver.
    """
    metrics = metrics or MetricRegistry()
    collectors = collectors if collectors is not None else build_registry(metrics)
    connections = connections or ConnectionManager(cfg)
    if LIVENESS_COLLECTOR not in collectors:
        raise ValueError(f"collector registry has no {LIVENESS_COLLECTOR} collector")
    orchestrator = Orchestrator(collectors, metrics)
    liveness = collectors.get(LIVENESS_COLLECTOR).instruments[LIVENESS_GAUGE]

    app = FastAPI(title=APP_NAME, version=__version__)
    app.state.metrics = metrics
    app.state.collectors = collectors

    @app.get("/")
    async def root() -> RedirectResponse:
        return RedirectResponse(url="/metrics")

    @app.get("/version", response_model=VersionInfo)
    async def version() -> VersionInfo:
        return VersionInfo(name=APP_NAME, version=__version__)

    @app.get("/healthz", response_model=Health)
    async def healthz() -> Health:
        return Health()

    @app.get("/metrics")
    async def scrape() -> Response:
        log.debug("received /metrics request")
        async with start_span_async("scrape") as span:
            try:
                session = await connections.acquire()
            except DatabaseConnectionError as exc:
                mark_failed(span, exc)
                log.error("error handling /metrics request: %s", exc)
                liveness.set(0)
                message = header_safe(exc) or exc.__class__.__name__
                return Response(
                    content=metrics.serialize_only([LIVENESS_GAUGE]),
                    media_type=metrics.content_type,
                    headers={"X-Error": message},
                )
            try:
                outcome = await orchestrator.run(session)
            finally:
                await connections.release(session)
            span.set_attribute("collectors.failed", len(outcome.failed))

        log.debug("successfully processed /metrics request", extra={"duration": outcome.duration})
        return Response(content=metrics.serialize(), media_type=metrics.content_type)

    return app
