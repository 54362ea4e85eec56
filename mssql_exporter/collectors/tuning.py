"""Query tuning collectors: expensive queries, missing indexes, fragmentation and stale statistics."""

import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")

QUERY_LABELS = ("query_hash", "database")
INDEX_LABELS = ("database", "table", "index_name")


def collect_top_queries(rows, metrics):
    for query_hash, database, execution_count, total_cpu_ms, total_elapsed_ms, avg_elapsed_ms in rows:
        log.debug(
            "fetched top query %s: db=%s exec_count=%s avg_ms=%s",
            query_hash, database, execution_count, avg_elapsed_ms,
        )
        labels = {"query_hash": query_hash, "database": database}
        metrics["mssql_query_execution_count"].labels(**labels).set(execution_count)
        metrics["mssql_query_total_cpu_ms"].labels(**labels).set(total_cpu_ms)
        metrics["mssql_query_total_elapsed_ms"].labels(**labels).set(total_elapsed_ms)
        metrics["mssql_query_avg_elapsed_ms"].labels(**labels).set(avg_elapsed_ms)


def collect_missing_indexes(rows, metrics):
    for database, table, index_handle, impact in rows:
        log.debug("fetched missing index: db=%s table=%s impact=%s", database, table, impact)
        metrics["mssql_missing_index_impact"].labels(database=database, table=table, index_handle=index_handle).set(impact)


def collect_index_fragmentation(rows, metrics):
    for database, table, index_name, fragmentation, page_count in rows:
        log.debug(
            "fetched index fragmentation: db=%s table=%s index=%s frag%%=%s",
            database, table, index_name, fragmentation,
        )
        labels = {"database": database, "table": table, "index_name": index_name}
        metrics["mssql_index_fragmentation_percent"].labels(**labels).set(fragmentation)
        metrics["mssql_index_page_count"].labels(**labels).set(page_count)


def collect_statistics_age(rows, metrics):
    for database, table, stats_name, days_old in rows:
        log.debug("fetched statistics age: db=%s table=%s stats=%s days=%s", database, table, stats_name, days_old)
        metrics["mssql_statistics_days_old"].labels(database=database, table=table, stats_name=stats_name).set(days_old)


def _per_database(columns: str, select: str) -> str:
    """Run ``select`` in every online user database and return the union of the rows.

    The inner statement runs through sp_executesql after ``USE [db]``, so quotes
    in it must already be doubled. Rows land in a #results temp table, which
    unlike a table variable is visible to the dynamic SQL. Databases that fail
    are skipped. A #results left behind by an aborted batch on the same session
    is dropped first.
    """
    return """SET NOCOUNT ON;
IF OBJECT_ID('tempdb..#results') IS NOT NULL DROP TABLE #results;

CREATE TABLE #results (
%s
);

DECLARE @db_name NVARCHAR(128);
DECLARE @sql NVARCHAR(MAX);

DECLARE db_cursor CURSOR FOR
SELECT name FROM sys.databases WHERE database_id > 4 AND state = 0;

OPEN db_cursor;
FETCH NEXT FROM db_cursor INTO @db_name;

WHILE @@FETCH_STATUS = 0
BEGIN
    BEGIN TRY
        SET @sql = N'USE [' + @db_name + N'];
        INSERT INTO #results
%s';

        EXEC sp_executesql @sql;
    END TRY
    BEGIN CATCH
    END CATCH

    FETCH NEXT FROM db_cursor INTO @db_name;
END

CLOSE db_cursor;
DEALLOCATE db_cursor;

SELECT * FROM #results;

DROP TABLE #results;""" % (columns, select)


TOP_QUERIES = CollectorSpec(
    name="mssql_top_queries",
    query="""SELECT TOP 20
    CONVERT(VARCHAR(50), qs.query_hash, 1) AS query_hash,
    ISNULL(DB_NAME(qt.dbid), 'N/A') AS database_name,
    qs.execution_count,
    qs.total_worker_time / 1000 AS total_cpu_ms,
    qs.total_elapsed_time / 1000 AS total_elapsed_ms,
    (qs.total_elapsed_time / qs.execution_count) / 1000 AS avg_elapsed_ms
FROM sys.dm_exec_query_stats qs
CROSS APPLY sys.dm_exec_sql_text(qs.sql_handle) AS qt
WHERE qs.query_hash IS NOT NULL
ORDER BY qs.total_elapsed_time DESC""",
    gauges=(
        GaugeSpec("mssql_query_execution_count", "Query execution count since last restart", QUERY_LABELS),
        GaugeSpec("mssql_query_total_cpu_ms", "Total CPU time for query in milliseconds", QUERY_LABELS),
        GaugeSpec("mssql_query_total_elapsed_ms", "Total elapsed time for query in milliseconds", QUERY_LABELS),
        GaugeSpec("mssql_query_avg_elapsed_ms", "Average elapsed time per execution in milliseconds", QUERY_LABELS),
    ),
    collect=collect_top_queries,
)

MISSING_INDEXES = CollectorSpec(
    name="mssql_missing_indexes",
    query="""SELECT TOP 20
    DB_NAME(d.database_id) AS database_name,
    OBJECT_NAME(d.object_id, d.database_id) AS table_name,
    CONVERT(VARCHAR(50), d.index_handle) AS index_handle,
    (s.avg_total_user_cost * s.avg_user_impact * (s.user_seeks + s.user_scans)) AS improvement_measure
FROM sys.dm_db_missing_index_details d
INNER JOIN sys.dm_db_missing_index_groups g ON d.index_handle = g.index_handle
INNER JOIN sys.dm_db_missing_index_group_stats s ON g.index_group_handle = s.group_handle
WHERE d.database_id > 4
ORDER BY improvement_measure DESC""",
    gauges=(
        GaugeSpec("mssql_missing_index_impact", "Missing index improvement measure", ("database", "table", "index_handle")),
    ),
    collect=collect_missing_indexes,
)

INDEX_FRAGMENTATION = CollectorSpec(
    name="mssql_index_fragmentation",
    query=_per_database(
        """    database_name NVARCHAR(128),
    table_name NVARCHAR(128),
    index_name NVARCHAR(128),
    fragmentation_percent DECIMAL(5,2),
    page_count BIGINT""",
        """        SELECT TOP 20
            DB_NAME() AS database_name,
            OBJECT_NAME(ips.object_id) AS table_name,
            i.name AS index_name,
            ips.avg_fragmentation_in_percent,
            ips.page_count
        FROM sys.dm_db_index_physical_stats(DB_ID(), NULL, NULL, NULL, ''LIMITED'') ips
        INNER JOIN sys.indexes i ON ips.object_id = i.object_id AND ips.index_id = i.index_id
        WHERE ips.avg_fragmentation_in_percent > 10
        AND ips.page_count > 100
        AND i.name IS NOT NULL
        ORDER BY ips.avg_fragmentation_in_percent DESC"""),
    gauges=(
        GaugeSpec("mssql_index_fragmentation_percent", "Index fragmentation percentage", INDEX_LABELS),
        GaugeSpec("mssql_index_page_count", "Number of pages in index", INDEX_LABELS),
    ),
    collect=collect_index_fragmentation,
)

STATISTICS_AGE = CollectorSpec(
    name="mssql_statistics_age",
    query=_per_database(
        """    database_name NVARCHAR(128),
    table_name NVARCHAR(128),
    stats_name NVARCHAR(128),
    days_old INT""",
        """        SELECT TOP 50
            DB_NAME() AS database_name,
            OBJECT_NAME(s.object_id) AS table_name,
            s.name AS stats_name,
            DATEDIFF(DAY, sp.last_updated, GETDATE()) AS days_old
        FROM sys.stats s
        CROSS APPLY sys.dm_db_stats_properties(s.object_id, s.stats_id) sp
        WHERE DATEDIFF(DAY, sp.last_updated, GETDATE()) > 7
        ORDER BY days_old DESC"""),
    gauges=(
        GaugeSpec("mssql_statistics_days_old", "Days since statistics were last updated", ("database", "table", "stats_name")),
    ),
    collect=collect_statistics_age,
)
