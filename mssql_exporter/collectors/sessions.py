"""Connection, blocking and long-running session collectors."""

import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")


def collect_connections(rows, metrics):
    for database, count in rows:
        log.debug("fetched number of connections for database %s: %s", database, count)
        metrics["mssql_connections"].labels(database=database, state="current").set(count)


def collect_client_connections(rows, metrics):
    for client, database, count in rows:
        log.debug("fetched number of connections for client %s database %s: %s", client, database, count)
        metrics["mssql_client_connections"].labels(client=client, database=database).set(count)


def collect_blocking_sessions(rows, metrics):
    total_blocked = 0
    for blocked_count, database, wait_type, wait_time_ms in rows:
        total_blocked += blocked_count
        log.debug(
            "fetched blocking info: database=%s wait_type=%s count=%s wait_time=%s",
            database, wait_type, blocked_count, wait_time_ms,
        )
        metrics["mssql_blocking_session_wait_time_ms"].labels(database=database, wait_type=wait_type).set(wait_time_ms)
    metrics["mssql_blocked_session_count"].set(total_blocked)
    log.debug("total blocked sessions: %s", total_blocked)


def collect_long_running_sessions(rows, metrics):
    metrics["mssql_long_running_session_count"].set(len(rows))
    log.debug("fetched long running sessions: count=%s", len(rows))
    for _count, session_id, database, status, duration in rows:
        metrics["mssql_long_running_session_duration_seconds"].labels(
            session_id=str(session_id), database=database, status=status
        ).set(duration)


def collect_blocking_details(rows, metrics):
    for blocked, blocking, database, wait_type, wait_time in rows:
        log.debug("fetched blocking chain: blocked=%s blocker=%s wait=%s", blocked, blocking, wait_time)
        metrics["mssql_blocking_session_id"].labels(
            blocked_session_id=str(blocked),
            blocking_session_id=str(blocking),
            database=database,
            wait_type=wait_type,
        ).set(wait_time)


CONNECTIONS = CollectorSpec(
    name="mssql_connections",
    query="""SELECT DB_NAME(sP.dbid)
        , COUNT(sP.spid)
FROM sys.sysprocesses sP
GROUP BY DB_NAME(sP.dbid)""",
    gauges=(GaugeSpec("mssql_connections", "Number of active connections", ("database", "state")),),
    collect=collect_connections,
)

CLIENT_CONNECTIONS = CollectorSpec(
    name="mssql_client_connections",
    query="""SELECT host_name, DB_NAME(dbid) dbname, COUNT(*) session_count
FROM sys.dm_exec_sessions a
LEFT JOIN sysprocesses b on a.session_id=b.spid
WHERE is_user_process=1
GROUP BY host_name, dbid""",
    gauges=(GaugeSpec("mssql_client_connections", "Number of active client connections", ("client", "database")),),
    collect=collect_client_connections,
)

BLOCKING_SESSIONS = CollectorSpec(
    name="mssql_blocking_sessions",
    query="""SELECT
    COUNT(*) AS blocked_count,
    ISNULL(DB_NAME(er.database_id), 'N/A') AS database_name,
    er.wait_type,
    SUM(er.wait_time) AS total_wait_time_ms
FROM sys.dm_exec_requests er
WHERE er.blocking_session_id <> 0
GROUP BY DB_NAME(er.database_id), er.wait_type""",
    gauges=(
        GaugeSpec("mssql_blocked_session_count", "Number of currently blocked sessions"),
        GaugeSpec("mssql_blocking_session_wait_time_ms", "Wait time in milliseconds for blocked sessions", ("database", "wait_type")),
    ),
    collect=collect_blocking_sessions,
)

LONG_RUNNING_SESSIONS = CollectorSpec(
    name="mssql_long_running_sessions",
    query="""SELECT
    COUNT(*) AS long_session_count,
    s.session_id,
    ISNULL(DB_NAME(r.database_id), 'N/A') AS database_name,
    r.status,
    DATEDIFF(SECOND, r.start_time, GETDATE()) AS duration_seconds
FROM sys.dm_exec_sessions s
LEFT JOIN sys.dm_exec_requests r ON s.session_id = r.session_id
WHERE s.is_user_process = 1
AND r.start_time IS NOT NULL
AND DATEDIFF(MINUTE, r.start_time, GETDATE()) > 5
GROUP BY s.session_id, r.database_id, r.status, r.start_time""",
    gauges=(
        GaugeSpec("mssql_long_running_session_count", "Number of sessions running longer than threshold"),
        GaugeSpec(
            "mssql_long_running_session_duration_seconds",
            "Duration of long running sessions in seconds",
            ("session_id", "database", "status"),
        ),
    ),
    collect=collect_long_running_sessions,
)

BLOCKING_DETAILS = CollectorSpec(
    name="mssql_blocking_details",
    query="""SELECT
    r.session_id AS blocked_session_id,
    r.blocking_session_id,
    ISNULL(DB_NAME(r.database_id), 'N/A') AS database_name,
    r.wait_type,
    r.wait_time
FROM sys.dm_exec_requests r
WHERE r.blocking_session_id <> 0""",
    gauges=(
        GaugeSpec(
            "mssql_blocking_session_id",
            "Blocking session ID information",
            ("blocked_session_id", "blocking_session_id", "database", "wait_type"),
        ),
    ),
    collect=collect_blocking_details,
)
