"""Per-scrape SQL Server session handling.

The exporter never pools: every scrape opens its own session through
``ConnectionManager.acquire`` and hands it back with ``release``. The driver is
blocking, so each call runs in the loop's default executor; the scrape still
waits for every call to finish before moving on.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Optional

from .config import Config

log = logging.getLogger("db")

Row = tuple


class DatabaseConnectionError(Exception):
    """The session could not be established; no query was sent."""


def _pymssql_connect(**options: Any):
    import pymssql

    return pymssql.connect(**options)


class Session:
    def __init__(self, conn: Any):
        self._conn = conn
        self._closed = False

    def _run(self, query: str) -> list[Row]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(query)
            # statements without a result set leave description unset
            if cursor.description is None:
                return []
            return list(cursor.fetchall())
        finally:
            cursor.close()

    async def execute(self, query: str) -> list[Row]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._run, query)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._conn.close)


class ConnectionManager:
    def __init__(self, cfg: Config, connect: Optional[Callable[..., Any]] = None):
        self.cfg = cfg
        self._connect = connect or _pymssql_connect

    def options(self) -> dict[str, Any]:
        cfg = self.cfg
        opts: dict[str, Any] = {
            "server": cfg.server,
            "port": str(cfg.port),
            "user": cfg.username,
            "password": cfg.password,
            "login_timeout": cfg.connect_timeout,
            "timeout": cfg.query_timeout,
            "encryption": "require" if cfg.encrypt else "off",
            "appname": "mssql-exporter",
            "autocommit": True,
        }
        if cfg.database:
            opts["database"] = cfg.database
        return opts

    async def acquire(self) -> Session:
        cfg = self.cfg
        log.debug(
            "connecting to %s@%s:%s",
            cfg.username, cfg.server, cfg.port,
            extra={"encrypt": cfg.encrypt, "trust_server_certificate": cfg.trust_server_certificate},
        )
        loop = asyncio.get_running_loop()
        try:
            conn = await loop.run_in_executor(None, partial(self._connect, **self.options()))
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            log.error("failed to connect to database: %s", message)
            raise DatabaseConnectionError(message) from exc
        log.debug("connected to database")
        return Session(conn)

    async def release(self, session: Session) -> None:
        try:
            await session.close()
        except Exception as exc:
            log.warning("error while closing database connection: %s", exc)
        else:
            log.debug("connection to database ended")
