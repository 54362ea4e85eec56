"""Per-database collectors: state, files, transactions, backups, properties and logs."""

import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")


def _flag(value) -> int:
    return 1 if value else 0


def collect_database_state(rows, metrics):
    for database, state in rows:
        log.debug("fetched state for database %s: %s", database, state)
        metrics["mssql_database_state"].labels(database=database).set(state)


def collect_log_growths(rows, metrics):
    for database, growths in rows:
        log.debug("fetched number of log growths for database %s: %s", database, growths)
        metrics["mssql_log_growths"].labels(database=database).set(growths)


def collect_database_filesize(rows, metrics):
    for database, logicalname, file_type, filename, size_kb in rows:
        log.debug(
            "fetched size of files for database %s: logicalname=%s type=%s filename=%s size=%s",
            database, logicalname, file_type, filename, size_kb,
        )
        metrics["mssql_database_filesize"].labels(
            database=database, logicalname=logicalname, type=file_type, filename=filename
        ).set(size_kb)


def collect_transactions(rows, metrics):
    for database, transactions in rows:
        log.debug("fetched number of transactions per second for %s: %s", database, transactions)
        metrics["mssql_transactions"].labels(database=database).set(transactions)


def collect_database_backups(rows, metrics):
    for row in rows:
        (
            database,
            last_full_seconds, last_diff_seconds, last_log_seconds,
            age_full_hours, age_diff_hours, age_log_hours,
            full_size_mb, diff_size_mb, log_size_mb,
        ) = row
        log.debug(
            "fetched backup info for database %s: full_age_h=%s diff_age_h=%s log_age_h=%s",
            database, age_full_hours, age_diff_hours, age_log_hours,
        )
        metrics["mssql_database_backup_last_full_seconds"].labels(database=database).set(last_full_seconds)
        metrics["mssql_database_backup_last_diff_seconds"].labels(database=database).set(last_diff_seconds)
        metrics["mssql_database_backup_last_log_seconds"].labels(database=database).set(last_log_seconds)
        metrics["mssql_database_backup_age_full_hours"].labels(database=database).set(age_full_hours)
        metrics["mssql_database_backup_age_diff_hours"].labels(database=database).set(age_diff_hours)
        metrics["mssql_database_backup_age_log_hours"].labels(database=database).set(age_log_hours)
        size = metrics["mssql_database_backup_size_mb"]
        size.labels(database=database, type="full").set(full_size_mb)
        size.labels(database=database, type="diff").set(diff_size_mb)
        size.labels(database=database, type="log").set(log_size_mb)


def collect_database_properties(rows, metrics):
    for database, recovery_model, compatibility_level, auto_close, auto_shrink, page_verify in rows:
        log.debug(
            "fetched database properties for %s: recovery_model=%s compat_level=%s auto_close=%s auto_shrink=%s",
            database, recovery_model, compatibility_level, auto_close, auto_shrink,
        )
        metrics["mssql_database_recovery_model"].labels(database=database).set(recovery_model)
        metrics["mssql_database_compatibility_level"].labels(database=database).set(compatibility_level)
        metrics["mssql_database_auto_close"].labels(database=database).set(_flag(auto_close))
        metrics["mssql_database_auto_shrink"].labels(database=database).set(_flag(auto_shrink))
        metrics["mssql_database_page_verify"].labels(database=database).set(page_verify)


def collect_transaction_log_stats(rows, metrics):
    for database, used_mb, total_mb, used_percent, reuse_wait, vlf_count in rows:
        log.debug(
            "fetched transaction log stats for %s: used_mb=%s total_mb=%s used_percent=%s reuse_wait=%s vlf_count=%s",
            database, used_mb, total_mb, used_percent, reuse_wait, vlf_count,
        )
        metrics["mssql_log_space_used_mb"].labels(database=database).set(used_mb)
        metrics["mssql_log_space_total_mb"].labels(database=database).set(total_mb)
        metrics["mssql_log_space_used_percent"].labels(database=database).set(used_percent)
        metrics["mssql_log_reuse_wait"].labels(database=database).set(reuse_wait)
        metrics["mssql_log_vlf_count"].labels(database=database).set(vlf_count)


def collect_database_size_growth(rows, metrics):
    for database, data_size_mb, log_size_mb, data_used_mb, data_free_mb in rows:
        log.debug(
            "fetched database size for %s: data=%s log=%s used=%s free=%s",
            database, data_size_mb, log_size_mb, data_used_mb, data_free_mb,
        )
        metrics["mssql_database_data_size_mb"].labels(database=database).set(data_size_mb)
        metrics["mssql_database_log_size_mb"].labels(database=database).set(log_size_mb)
        metrics["mssql_database_data_used_mb"].labels(database=database).set(data_used_mb)
        metrics["mssql_database_data_free_mb"].labels(database=database).set(data_free_mb)


DATABASE_STATE = CollectorSpec(
    name="mssql_database_state",
    query="SELECT name,state FROM master.sys.databases",
    gauges=(
        GaugeSpec(
            "mssql_database_state",
            "Databases states: 0=ONLINE 1=RESTORING 2=RECOVERING 3=RECOVERY_PENDING 4=SUSPECT 5=EMERGENCY "
            "6=OFFLINE 7=COPYING 10=OFFLINE_SECONDARY",
            ("database",),
        ),
    ),
    collect=collect_database_state,
)

LOG_GROWTHS = CollectorSpec(
    name="mssql_log_growths",
    query="""SELECT rtrim(instance_name), cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Log Growths' and instance_name <> '_Total'""",
    gauges=(
        GaugeSpec(
            "mssql_log_growths",
            "Total number of times the transaction log for the database has been expanded last restart",
            ("database",),
        ),
    ),
    collect=collect_log_growths,
)

DATABASE_FILESIZE = CollectorSpec(
    name="mssql_database_filesize",
    query="""SELECT DB_NAME(database_id) AS database_name, name AS logical_name, type, physical_name,
(size * CAST(8 AS BIGINT)) size_kb FROM sys.master_files""",
    gauges=(
        GaugeSpec(
            "mssql_database_filesize",
            "Physical sizes of files used by database in KB, their names and types "
            "(0=rows, 1=log, 2=filestream,3=n/a 4=fulltext(before v2008 of MSSQL))",
            ("database", "logicalname", "type", "filename"),
        ),
    ),
    collect=collect_database_filesize,
)

TRANSACTIONS = CollectorSpec(
    name="mssql_transactions",
    query="""SELECT rtrim(instance_name), cntr_value
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Transactions/sec' AND instance_name <> '_Total'""",
    gauges=(
        GaugeSpec(
            "mssql_transactions",
            "Number of transactions started for the database per second. Transactions/sec does not count "
            "XTP-only transactions (transactions started by a natively compiled stored procedure.)",
            ("database",),
        ),
    ),
    collect=collect_transactions,
)

DATABASE_BACKUPS = CollectorSpec(
    name="mssql_database_backups",
    query="""SELECT
    d.name AS database_name,
    ISNULL(DATEDIFF(SECOND, '19700101', MAX(CASE WHEN b.type = 'D' THEN b.backup_finish_date END)), 0) AS last_full_backup_seconds,
    ISNULL(DATEDIFF(SECOND, '19700101', MAX(CASE WHEN b.type = 'I' THEN b.backup_finish_date END)), 0) AS last_diff_backup_seconds,
    ISNULL(DATEDIFF(SECOND, '19700101', MAX(CASE WHEN b.type = 'L' THEN b.backup_finish_date END)), 0) AS last_log_backup_seconds,
    ISNULL(DATEDIFF(HOUR, MAX(CASE WHEN b.type = 'D' THEN b.backup_finish_date END), GETDATE()), -1) AS age_full_hours,
    ISNULL(DATEDIFF(HOUR, MAX(CASE WHEN b.type = 'I' THEN b.backup_finish_date END), GETDATE()), -1) AS age_diff_hours,
    ISNULL(DATEDIFF(HOUR, MAX(CASE WHEN b.type = 'L' THEN b.backup_finish_date END), GETDATE()), -1) AS age_log_hours,
    ISNULL(MAX(CASE WHEN b.type = 'D' THEN b.backup_size END) / 1024.0 / 1024.0, 0) AS last_full_size_mb,
    ISNULL(MAX(CASE WHEN b.type = 'I' THEN b.backup_size END) / 1024.0 / 1024.0, 0) AS last_diff_size_mb,
    ISNULL(MAX(CASE WHEN b.type = 'L' THEN b.backup_size END) / 1024.0 / 1024.0, 0) AS last_log_size_mb
FROM sys.databases d
LEFT JOIN msdb.dbo.backupset b ON d.name = b.database_name
WHERE d.database_id > 4
GROUP BY d.name""",
    gauges=(
        GaugeSpec("mssql_database_backup_last_full_seconds", "Last full backup time in seconds since epoch", ("database",)),
        GaugeSpec("mssql_database_backup_last_diff_seconds", "Last differential backup time in seconds since epoch", ("database",)),
        GaugeSpec("mssql_database_backup_last_log_seconds", "Last transaction log backup time in seconds since epoch", ("database",)),
        GaugeSpec("mssql_database_backup_age_full_hours", "Hours since last full backup", ("database",)),
        GaugeSpec("mssql_database_backup_age_diff_hours", "Hours since last differential backup", ("database",)),
        GaugeSpec("mssql_database_backup_age_log_hours", "Hours since last transaction log backup", ("database",)),
        GaugeSpec("mssql_database_backup_size_mb", "Last backup size in MB", ("database", "type")),
    ),
    collect=collect_database_backups,
)

DATABASE_PROPERTIES = CollectorSpec(
    name="mssql_database_properties",
    query="""SELECT
    name,
    recovery_model,
    compatibility_level,
    is_auto_close_on,
    is_auto_shrink_on,
    page_verify_option
FROM sys.databases
WHERE database_id > 4""",
    gauges=(
        GaugeSpec("mssql_database_recovery_model", "Database recovery model (1=FULL, 2=BULK_LOGGED, 3=SIMPLE)", ("database",)),
        GaugeSpec("mssql_database_compatibility_level", "Database compatibility level", ("database",)),
        GaugeSpec("mssql_database_auto_close", "Database auto close setting (0=OFF, 1=ON)", ("database",)),
        GaugeSpec("mssql_database_auto_shrink", "Database auto shrink setting (0=OFF, 1=ON)", ("database",)),
        GaugeSpec(
            "mssql_database_page_verify",
            "Database page verify option (0=NONE, 1=TORN_PAGE_DETECTION, 2=CHECKSUM)",
            ("database",),
        ),
    ),
    collect=collect_database_properties,
)

TRANSACTION_LOG_STATS = CollectorSpec(
    name="mssql_transaction_log_stats",
    query="""SET NOCOUNT ON;
IF OBJECT_ID('tempdb..#logspace') IS NOT NULL DROP TABLE #logspace;

CREATE TABLE #logspace (
    database_name NVARCHAR(128),
    log_size_mb DECIMAL(18,2),
    log_space_used_percent DECIMAL(5,2),
    status INT
);

INSERT INTO #logspace
EXEC('DBCC SQLPERF(LOGSPACE) WITH NO_INFOMSGS');

DECLARE @vlf_counts TABLE (database_id INT, vlf_count INT);
DECLARE @db_id INT;
DECLARE db_cursor CURSOR FOR
    SELECT database_id FROM sys.databases WHERE database_id > 4 AND state = 0;

OPEN db_cursor;
FETCH NEXT FROM db_cursor INTO @db_id;

WHILE @@FETCH_STATUS = 0
BEGIN
    BEGIN TRY
        INSERT INTO @vlf_counts (database_id, vlf_count)
        SELECT @db_id, COUNT(*) FROM sys.dm_db_log_info(@db_id);
    END TRY
    BEGIN CATCH
        INSERT INTO @vlf_counts (database_id, vlf_count) VALUES (@db_id, 0);
    END CATCH

    FETCH NEXT FROM db_cursor INTO @db_id;
END

CLOSE db_cursor;
DEALLOCATE db_cursor;

SELECT
    ls.database_name,
    CAST(ls.log_size_mb * (ls.log_space_used_percent / 100.0) AS DECIMAL(18,2)) AS log_space_used_mb,
    ls.log_size_mb AS log_space_total_mb,
    ls.log_space_used_percent,
    d.log_reuse_wait,
    ISNULL(v.vlf_count, 0) AS vlf_count
FROM #logspace ls
INNER JOIN sys.databases d ON ls.database_name = d.name
LEFT JOIN @vlf_counts v ON d.database_id = v.database_id
WHERE d.database_id > 4
  AND d.state = 0;

DROP TABLE #logspace;""",
    gauges=(
        GaugeSpec("mssql_log_space_used_percent", "Transaction log space used percentage", ("database",)),
        GaugeSpec("mssql_log_space_used_mb", "Transaction log space used in MB", ("database",)),
        GaugeSpec("mssql_log_space_total_mb", "Transaction log total space in MB", ("database",)),
        GaugeSpec(
            "mssql_log_reuse_wait",
            "Transaction log reuse wait reason (0=NOTHING, 1=CHECKPOINT, 2=LOG_BACKUP, 3=ACTIVE_BACKUP_OR_RESTORE, "
            "4=ACTIVE_TRANSACTION, 5=DATABASE_MIRRORING, 6=REPLICATION, 7=DATABASE_SNAPSHOT_CREATION, 8=LOG_SCAN, "
            "9=AVAILABILITY_REPLICA, 10=OLDEST_PAGE, 11=XTP_CHECKPOINT, 12=SLOG_SCAN, 13=OTHER_TRANSIENT)",
            ("database",),
        ),
        GaugeSpec("mssql_log_vlf_count", "Virtual log file count", ("database",)),
    ),
    collect=collect_transaction_log_stats,
)

DATABASE_SIZE_GROWTH = CollectorSpec(
    name="mssql_database_size_growth",
    query="""SET NOCOUNT ON;
IF OBJECT_ID('tempdb..#Results') IS NOT NULL DROP TABLE #Results;

CREATE TABLE #Results (
    database_name NVARCHAR(128),
    data_size_mb DECIMAL(18,2),
    log_size_mb DECIMAL(18,2),
    data_used_mb DECIMAL(18,2),
    data_free_mb DECIMAL(18,2)
);

DECLARE @dbname NVARCHAR(128);
DECLARE @sql NVARCHAR(MAX);

DECLARE db_cursor CURSOR FOR
SELECT name FROM sys.databases WHERE database_id > 4 AND state = 0;

OPEN db_cursor;
FETCH NEXT FROM db_cursor INTO @dbname;

WHILE @@FETCH_STATUS = 0
BEGIN
    SET @sql = N'USE [' + @dbname + N'];
    INSERT INTO #Results
    SELECT
        ''' + @dbname + N''' AS database_name,
        CAST(SUM(CASE WHEN type = 0 THEN size * 8 / 1024.0 ELSE 0 END) AS DECIMAL(18,2)) AS data_size_mb,
        CAST(SUM(CASE WHEN type = 1 THEN size * 8 / 1024.0 ELSE 0 END) AS DECIMAL(18,2)) AS log_size_mb,
        CAST(SUM(CASE WHEN type = 0 THEN CAST(FILEPROPERTY(name, ''SpaceUsed'') AS BIGINT) * 8 / 1024.0 ELSE 0 END) AS DECIMAL(18,2)) AS data_used_mb,
        CAST(SUM(CASE WHEN type = 0 THEN (size - CAST(FILEPROPERTY(name, ''SpaceUsed'') AS BIGINT)) * 8 / 1024.0 ELSE 0 END) AS DECIMAL(18,2)) AS data_free_mb
    FROM sys.database_files;';

    EXEC sp_executesql @sql;
    FETCH NEXT FROM db_cursor INTO @dbname;
END;

CLOSE db_cursor;
DEALLOCATE db_cursor;

SELECT * FROM #Results;

DROP TABLE #Results;""",
    gauges=(
        GaugeSpec("mssql_database_data_size_mb", "Database data file size in MB", ("database",)),
        GaugeSpec("mssql_database_log_size_mb", "Database log file size in MB", ("database",)),
        GaugeSpec("mssql_database_data_used_mb", "Database data space used in MB", ("database",)),
        GaugeSpec("mssql_database_data_free_mb", "Database data free space in MB", ("database",)),
    ),
    collect=collect_database_size_growth,
)
