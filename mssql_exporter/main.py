import logging
import sys

import uvicorn

from . import __version__
from .api import create_app
from .config import ConfigError, load_config
from .logging_config import init_logging
from .tracer import init_tracing

log = logging.getLogger("exporter")


def run() -> None:
    try:
        cfg = load_config()
    except ConfigError as exc:
        init_logging()
        log.error("invalid configuration: %s", exc)
        sys.exit(1)

    init_logging(cfg.log_level, cfg.log_format)
    init_tracing(cfg.tracing_enabled)
    if not cfg.trust_server_certificate:
        log.warning("certificate validation is governed by the FreeTDS TLS settings (freetds.conf 'ca file')")

    app = create_app(cfg)
    log.info("Prometheus MSSQL Exporter v%s", __version__)
    log.info(
        "listening on %s:%s monitoring %s@%s:%s",
        cfg.listen_host, cfg.listen_port, cfg.username, cfg.server, cfg.port,
        extra=cfg.describe(),
    )
    # uvicorn installs its own SIGINT/SIGTERM handling and drains in-flight scrapes
    uvicorn.run(app, host=cfg.listen_host, port=cfg.listen_port, log_config=None)


if __name__ == "__main__":
    run()
