"""Instance-wide collectors: liveness, version, clock, error counters and CPU."""

import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")


def parse_product_version(value: str) -> tuple[int, int]:
    """Split a ``ProductVersion`` server property such as ``15.0.4153.1`` into (major, minor)."""
    parts = str(value).strip().split(".")
    major = int(parts[0])
    minor = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return major, minor


def collect_up(rows, metrics):
    up = rows[0][0]
    log.debug("fetched status of instance: %s", up)
    metrics["mssql_up"].set(up)


def collect_product_version(rows, metrics):
    major, minor = parse_product_version(rows[0][0])
    log.debug("fetched version of instance: %s.%s", major, minor)
    # minor is scaled by 100 so 16.10 and 16.1 stay distinct
    metrics["mssql_product_version"].set(major + minor / 100)


def collect_instance_local_time(rows, metrics):
    local_time = rows[0][0]
    log.debug("fetched current time: %s", local_time)
    metrics["mssql_instance_local_time"].set(local_time)


def _single_counter(metric_name):
    def collect(rows, metrics):
        value = rows[0][0]
        log.debug("fetched %s: %s", metric_name, value)
        metrics[metric_name].set(value)

    collect.__name__ = f"collect_{metric_name}"
    return collect


def collect_batch_requests(rows, metrics):
    for (batch_requests, *_rest) in rows:
        log.debug("fetched number of batch requests per second: %s", batch_requests)
        metrics["mssql_batch_requests"].set(batch_requests)


def collect_security_stats(rows, metrics):
    failed = rows[0][0]
    log.debug("fetched failed login count: %s", failed)
    metrics["mssql_failed_login_count"].set(failed)


def collect_cpu_scheduler_stats(rows, metrics):
    cpu_usage, runnable_tasks, context_switches = rows[0]
    log.debug(
        "fetched CPU/scheduler stats: cpu_usage=%s runnable_tasks=%s context_switches=%s",
        cpu_usage, runnable_tasks, context_switches,
    )
    metrics["mssql_cpu_usage_percent"].set(cpu_usage)
    metrics["mssql_scheduler_runnable_tasks_count"].set(runnable_tasks)
    metrics["mssql_context_switches_count"].set(context_switches)


UP = CollectorSpec(
    name="mssql_up",
    query="SELECT 1",
    gauges=(GaugeSpec("mssql_up", "UP Status"),),
    collect=collect_up,
)

PRODUCT_VERSION = CollectorSpec(
    name="mssql_product_version",
    query="""SELECT CONVERT(VARCHAR(128), SERVERPROPERTY ('productversion')) AS ProductVersion,
  SERVERPROPERTY('ProductVersion') AS ProductVersion""",
    gauges=(GaugeSpec("mssql_product_version", "Instance version (Major.Minor)"),),
    collect=collect_product_version,
)

INSTANCE_LOCAL_TIME = CollectorSpec(
    name="mssql_instance_local_time",
    query="SELECT DATEDIFF(second, '19700101', GETUTCDATE())",
    gauges=(GaugeSpec("mssql_instance_local_time", "Number of seconds since epoch on local instance"),),
    collect=collect_instance_local_time,
)

DEADLOCKS = CollectorSpec(
    name="mssql_deadlocks",
    query="""SELECT cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Number of Deadlocks/sec' AND instance_name = '_Total'""",
    gauges=(GaugeSpec("mssql_deadlocks", "Number of lock requests per second that resulted in a deadlock since last restart"),),
    collect=_single_counter("mssql_deadlocks"),
)

USER_ERRORS = CollectorSpec(
    name="mssql_user_errors",
    query="""SELECT cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Errors/sec' AND instance_name = 'User Errors'""",
    gauges=(GaugeSpec("mssql_user_errors", "Number of user errors/sec since last restart"),),
    collect=_single_counter("mssql_user_errors"),
)

KILL_CONNECTION_ERRORS = CollectorSpec(
    name="mssql_kill_connection_errors",
    query="""SELECT cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Errors/sec' AND instance_name = 'Kill Connection Errors'""",
    gauges=(GaugeSpec("mssql_kill_connection_errors", "Number of kill connection errors/sec since last restart"),),
    collect=_single_counter("mssql_kill_connection_errors"),
)

BATCH_REQUESTS = CollectorSpec(
    name="mssql_batch_requests",
    query="""SELECT TOP 1 cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Batch Requests/sec'""",
    gauges=(
        GaugeSpec(
            "mssql_batch_requests",
            "Number of Transact-SQL command batches received per second. This statistic is affected by all "
            "constraints (such as I/O, number of users, cachesize, complexity of requests, and so on). "
            "High batch requests mean good throughput",
        ),
    ),
    collect=collect_batch_requests,
)

SECURITY_STATS = CollectorSpec(
    name="mssql_security_stats",
    query="""SET NOCOUNT ON;
IF OBJECT_ID('tempdb..#ErrorLog') IS NOT NULL DROP TABLE #ErrorLog;

CREATE TABLE #ErrorLog (
    LogDate DATETIME,
    ProcessInfo NVARCHAR(100),
    [Text] NVARCHAR(4000)
);

BEGIN TRY
    INSERT INTO #ErrorLog
    EXEC xp_readerrorlog 0, 1, N'Login failed';
END TRY
BEGIN CATCH
    -- xp_readerrorlog needs elevated permissions; -1 marks the count as unavailable
    SELECT -1 AS failed_login_count;
    DROP TABLE #ErrorLog;
    RETURN;
END CATCH;

SELECT COUNT(*) AS failed_login_count
FROM #ErrorLog
WHERE LogDate >= DATEADD(MINUTE, -5, GETDATE());

DROP TABLE #ErrorLog;""",
    gauges=(GaugeSpec("mssql_failed_login_count", "Number of failed login attempts in the error log (last 5 minutes)"),),
    collect=collect_security_stats,
)

CPU_SCHEDULER_STATS = CollectorSpec(
    name="mssql_cpu_scheduler_stats",
    query="""SELECT TOP 1
    record.value('(./Record/SchedulerMonitorEvent/SystemHealth/ProcessUtilization)[1]', 'int') AS sql_cpu_usage,
    (SELECT SUM(runnable_tasks_count) FROM sys.dm_os_schedulers WHERE status = 'VISIBLE ONLINE') AS runnable_tasks,
    (SELECT SUM(context_switches_count) FROM sys.dm_os_schedulers WHERE status = 'VISIBLE ONLINE') AS context_switches
FROM (
    SELECT CAST(record AS XML) AS record, timestamp
    FROM sys.dm_os_ring_buffers
    WHERE ring_buffer_type = N'RING_BUFFER_SCHEDULER_MONITOR'
    AND record LIKE '%<SystemHealth>%'
) AS x
ORDER BY timestamp DESC""",
    gauges=(
        GaugeSpec("mssql_cpu_usage_percent", "SQL Server CPU usage percentage"),
        GaugeSpec("mssql_scheduler_runnable_tasks_count", "Number of runnable tasks waiting on schedulers"),
        GaugeSpec("mssql_context_switches_count", "Number of context switches since last restart"),
    ),
    collect=collect_cpu_scheduler_stats,
)
