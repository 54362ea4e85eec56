import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")

JOB_LABELS = ("job_name", "job_id")


def collect_sql_agent_jobs(rows, metrics):
    # every job is published, including those that never ran (status -1, times 0)
    for job_name, job_id, enabled, status, last_run, next_run, last_duration in rows:
        log.debug(
            "fetched SQL Agent job %s: enabled=%s status=%s duration=%s",
            job_name, enabled, status, last_duration,
        )
        labels = {"job_name": job_name, "job_id": job_id}
        metrics["mssql_sql_agent_job_status"].labels(**labels).set(status)
        metrics["mssql_sql_agent_job_enabled"].labels(**labels).set(1 if enabled else 0)
        metrics["mssql_sql_agent_job_last_run_seconds"].labels(**labels).set(last_run)
        metrics["mssql_sql_agent_job_next_run_seconds"].labels(**labels).set(next_run)
        metrics["mssql_sql_agent_job_last_duration_seconds"].labels(**labels).set(last_duration)


SQL_AGENT_JOBS = CollectorSpec(
    name="mssql_sql_agent_jobs",
    query="""SELECT
    j.name AS job_name,
    CAST(j.job_id AS VARCHAR(50)) AS job_id,
    j.enabled,
    CASE
        WHEN h.run_status IS NULL THEN -1
        ELSE h.run_status
    END AS last_run_status,
    CASE
        WHEN h.run_date IS NULL THEN 0
        ELSE DATEDIFF(SECOND, '19700101',
            CAST(
                CAST(h.run_date AS CHAR(8)) + ' ' +
                STUFF(STUFF(RIGHT('000000' + CAST(h.run_time AS VARCHAR(6)), 6), 5, 0, ':'), 3, 0, ':')
                AS DATETIME
            ))
    END AS last_run_seconds,
    CASE
        WHEN ja.next_scheduled_run_date IS NULL OR ja.next_scheduled_run_date = 0 THEN 0
        ELSE DATEDIFF(SECOND, '19700101',
            CAST(
                CAST(ja.next_scheduled_run_date AS CHAR(8)) + ' ' +
                STUFF(STUFF(RIGHT('000000' + CAST(ja.next_scheduled_run_time AS VARCHAR(6)), 6), 5, 0, ':'), 3, 0, ':')
                AS DATETIME
            ))
    END AS next_run_seconds,
    CASE
        WHEN h.run_duration IS NULL THEN 0
        ELSE (h.run_duration / 10000 * 3600) + ((h.run_duration % 10000) / 100 * 60) + (h.run_duration % 100)
    END AS last_duration_seconds
FROM msdb.dbo.sysjobs j
LEFT JOIN (
    SELECT job_id, run_status, run_date, run_time, run_duration,
           ROW_NUMBER() OVER (PARTITION BY job_id ORDER BY run_date DESC, run_time DESC) AS rn
    FROM msdb.dbo.sysjobhistory
    WHERE step_id = 0
) h ON j.job_id = h.job_id AND h.rn = 1
LEFT JOIN (
    SELECT job_id,
           MIN(next_run_date) AS next_scheduled_run_date,
           MIN(next_run_time) AS next_scheduled_run_time
    FROM msdb.dbo.sysjobschedules js
    INNER JOIN msdb.dbo.sysschedules s ON js.schedule_id = s.schedule_id
    WHERE next_run_date > 0
    GROUP BY job_id
) ja ON j.job_id = ja.job_id""",
    gauges=(
        GaugeSpec(
            "mssql_sql_agent_job_status",
            "SQL Agent job last run status (-1=Never Run, 0=Failed, 1=Succeeded, 2=Retry, 3=Canceled, 4=In Progress)",
            JOB_LABELS,
        ),
        GaugeSpec("mssql_sql_agent_job_enabled", "SQL Agent job enabled status (0=Disabled, 1=Enabled)", JOB_LABELS),
        GaugeSpec("mssql_sql_agent_job_last_run_seconds", "SQL Agent job last run time in seconds since epoch", JOB_LABELS),
        GaugeSpec(
            "mssql_sql_agent_job_next_run_seconds",
            "SQL Agent job next scheduled run time in seconds since epoch",
            JOB_LABELS,
        ),
        GaugeSpec("mssql_sql_agent_job_last_duration_seconds", "SQL Agent job last run duration in seconds", JOB_LABELS),
    ),
    collect=collect_sql_agent_jobs,
)
