"""Buffer pool, I/O, memory, wait and tempdb collectors."""

import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")

VERSION_STORE_ROW = "VersionStore"


def collect_buffer_manager(rows, metrics):
    page_read, page_write, page_life_expectancy, lazy_write, page_checkpoint = rows[0]
    log.debug(
        "fetched buffer manager: page_read=%s page_write=%s page_life_expectancy=%s lazy_write=%s page_checkpoint=%s",
        page_read, page_write, page_life_expectancy, lazy_write, page_checkpoint,
    )
    metrics["mssql_page_read_total"].set(page_read)
    metrics["mssql_page_write_total"].set(page_write)
    metrics["mssql_page_life_expectancy"].set(page_life_expectancy)
    metrics["mssql_page_checkpoint_total"].set(page_checkpoint)
    metrics["mssql_lazy_write_total"].set(lazy_write)


def collect_io_stall(rows, metrics):
    stall_by_type = metrics["mssql_io_stall"]
    for database, read, write, stall, queued_read, queued_write in rows:
        log.debug(
            "fetched number of stalls for database %s: read=%s write=%s queued_read=%s queued_write=%s",
            database, read, write, queued_read, queued_write,
        )
        metrics["mssql_io_stall_total"].labels(database=database).set(stall)
        stall_by_type.labels(database=database, type="read").set(read)
        stall_by_type.labels(database=database, type="write").set(write)
        stall_by_type.labels(database=database, type="queued_read").set(queued_read)
        stall_by_type.labels(database=database, type="queued_write").set(queued_write)


def collect_os_process_memory(rows, metrics):
    page_fault_count, memory_utilization_percentage = rows[0]
    log.debug("fetched page fault count: %s", page_fault_count)
    metrics["mssql_page_fault_count"].set(page_fault_count)
    metrics["mssql_memory_utilization_percentage"].set(memory_utilization_percentage)


def collect_os_sys_memory(rows, metrics):
    total_physical, available_physical, total_page_file, available_page_file = rows[0]
    log.debug(
        "fetched system memory: total_physical=%s available_physical=%s total_page_file=%s available_page_file=%s",
        total_physical, available_physical, total_page_file, available_page_file,
    )
    metrics["mssql_total_physical_memory_kb"].set(total_physical)
    metrics["mssql_available_physical_memory_kb"].set(available_physical)
    metrics["mssql_total_page_file_kb"].set(total_page_file)
    metrics["mssql_available_page_file_kb"].set(available_page_file)


def collect_wait_stats(rows, metrics):
    for wait_type, wait_time_ms, wait_count, category in rows:
        log.debug(
            "fetched wait stat: wait_type=%s category=%s wait_time_ms=%s count=%s",
            wait_type, category, wait_time_ms, wait_count,
        )
        metrics["mssql_wait_time_ms"].labels(wait_type=wait_type, category=category).set(wait_time_ms)
        metrics["mssql_wait_count"].labels(wait_type=wait_type, category=category).set(wait_count)


def collect_tempdb_stats(rows, metrics):
    file_count = 0
    version_store_kb = 0
    for data_file_count, file_name, file_type, size_kb, space_used_kb in rows:
        if file_name == VERSION_STORE_ROW:
            version_store_kb = space_used_kb or 0
            log.debug("fetched tempdb version store size (KB): %s", version_store_kb)
            continue
        # the version store row reports 0 files; only real file rows carry the count
        if data_file_count > 0:
            file_count = data_file_count
        used = space_used_kb or 0
        log.debug("fetched tempdb file %s: type=%s size_kb=%s used_kb=%s", file_name, file_type, size_kb, used)
        metrics["mssql_tempdb_file_size_kb"].labels(file_name=file_name, file_type=file_type).set(size_kb)
        metrics["mssql_tempdb_space_used_kb"].labels(file_name=file_name).set(used)
    metrics["mssql_tempdb_file_count"].set(file_count)
    metrics["mssql_tempdb_version_store_mb"].set(float(version_store_kb) / 1024.0)


def collect_disk_latency(rows, metrics):
    for database, file_type, read_latency, write_latency in rows:
        log.debug(
            "fetched disk latency for %s: type=%s read_ms=%s write_ms=%s",
            database, file_type, read_latency, write_latency,
        )
        metrics["mssql_disk_read_latency_ms"].labels(database=database, file_type=file_type).set(read_latency)
        metrics["mssql_disk_write_latency_ms"].labels(database=database, file_type=file_type).set(write_latency)


def collect_buffer_cache_hit_ratio(rows, metrics):
    hit_ratio = rows[0][0]
    log.debug("fetched buffer cache hit ratio: %s", hit_ratio)
    metrics["mssql_buffer_cache_hit_ratio_percent"].set(hit_ratio)


BUFFER_MANAGER = CollectorSpec(
    name="mssql_buffer_manager",
    query="""SELECT * FROM
        (
            SELECT rtrim(counter_name) as counter_name, cntr_value
            FROM sys.dm_os_performance_counters
            WHERE counter_name in ('Page reads/sec', 'Page writes/sec', 'Page life expectancy', 'Lazy writes/sec', 'Checkpoint pages/sec')
            AND object_name = 'SQLServer:Buffer Manager'
        ) d
        PIVOT
        (
        MAX(cntr_value)
        FOR counter_name IN ([Page reads/sec], [Page writes/sec], [Page life expectancy], [Lazy writes/sec], [Checkpoint pages/sec])
        ) piv""",
    gauges=(
        GaugeSpec("mssql_page_read_total", "Page reads/sec"),
        GaugeSpec("mssql_page_write_total", "Page writes/sec"),
        GaugeSpec(
            "mssql_page_life_expectancy",
            "Indicates the minimum number of seconds a page will stay in the buffer pool on this node without "
            "references. The traditional advice from Microsoft used to be that the PLE should remain above 300 seconds",
        ),
        GaugeSpec("mssql_lazy_write_total", "Lazy writes/sec"),
        GaugeSpec("mssql_page_checkpoint_total", "Checkpoint pages/sec"),
    ),
    collect=collect_buffer_manager,
)

IO_STALL = CollectorSpec(
    name="mssql_io_stall",
    query="""SELECT
cast(DB_Name(a.database_id) as varchar) as name,
    max(io_stall_read_ms),
    max(io_stall_write_ms),
    max(io_stall),
    max(io_stall_queued_read_ms),
    max(io_stall_queued_write_ms)
FROM
sys.dm_io_virtual_file_stats(null, null) a
INNER JOIN sys.master_files b ON a.database_id = b.database_id and a.file_id = b.file_id
GROUP BY a.database_id""",
    gauges=(
        GaugeSpec("mssql_io_stall", "Wait time (ms) of stall since last restart", ("database", "type")),
        GaugeSpec("mssql_io_stall_total", "Wait time (ms) of stall since last restart", ("database",)),
    ),
    collect=collect_io_stall,
)

OS_PROCESS_MEMORY = CollectorSpec(
    name="mssql_os_process_memory",
    query="""SELECT page_fault_count, memory_utilization_percentage
FROM sys.dm_os_process_memory""",
    gauges=(
        GaugeSpec("mssql_page_fault_count", "Number of page faults since last restart"),
        GaugeSpec("mssql_memory_utilization_percentage", "Percentage of memory utilization"),
    ),
    collect=collect_os_process_memory,
)

OS_SYS_MEMORY = CollectorSpec(
    name="mssql_os_sys_memory",
    query="""SELECT total_physical_memory_kb, available_physical_memory_kb, total_page_file_kb, available_page_file_kb
FROM sys.dm_os_sys_memory""",
    gauges=(
        GaugeSpec("mssql_total_physical_memory_kb", "Total physical memory in KB"),
        GaugeSpec("mssql_available_physical_memory_kb", "Available physical memory in KB"),
        GaugeSpec("mssql_total_page_file_kb", "Total page file in KB"),
        GaugeSpec("mssql_available_page_file_kb", "Available page file in KB"),
    ),
    collect=collect_os_sys_memory,
)

WAIT_STATS = CollectorSpec(
    name="mssql_wait_stats",
    query="""SELECT TOP 20
    wait_type,
    wait_time_ms,
    waiting_tasks_count,
    CASE
        WHEN wait_type LIKE 'LCK%' THEN 'Lock'
        WHEN wait_type LIKE 'PAGEIO%' OR wait_type LIKE 'WRITELOG' OR wait_type LIKE 'IO_%' THEN 'IO'
        WHEN wait_type LIKE 'RESOURCE_SEMAPHORE%' THEN 'Memory'
        WHEN wait_type LIKE 'SOS_SCHEDULER_YIELD' OR wait_type LIKE 'THREADPOOL' OR wait_type LIKE 'CX%' THEN 'CPU'
        WHEN wait_type LIKE 'ASYNC_NETWORK_IO' THEN 'Network'
        ELSE 'Other'
    END AS wait_category
FROM sys.dm_os_wait_stats
WHERE wait_type NOT IN (
    'CLR_SEMAPHORE', 'LAZYWRITER_SLEEP', 'RESOURCE_QUEUE', 'SLEEP_TASK',
    'SLEEP_SYSTEMTASK', 'SQLTRACE_BUFFER_FLUSH', 'WAITFOR', 'LOGMGR_QUEUE',
    'CHECKPOINT_QUEUE', 'REQUEST_FOR_DEADLOCK_SEARCH', 'XE_TIMER_EVENT', 'BROKER_TO_FLUSH',
    'BROKER_TASK_STOP', 'CLR_MANUAL_EVENT', 'CLR_AUTO_EVENT', 'DISPATCHER_QUEUE_SEMAPHORE',
    'FT_IFTS_SCHEDULER_IDLE_WAIT', 'XE_DISPATCHER_WAIT', 'XE_DISPATCHER_JOIN', 'SQLTRACE_INCREMENTAL_FLUSH_SLEEP',
    'ONDEMAND_TASK_QUEUE', 'BROKER_EVENTHANDLER', 'SLEEP_BPOOL_FLUSH', 'DIRTY_PAGE_POLL', 'HADR_FILESTREAM_IOMGR_IOCOMPLETION'
)
ORDER BY wait_time_ms DESC""",
    gauges=(
        GaugeSpec("mssql_wait_time_ms", "Wait time in milliseconds by wait type since last restart", ("wait_type", "category")),
        GaugeSpec("mssql_wait_count", "Number of waits by wait type since last restart", ("wait_type", "category")),
    ),
    collect=collect_wait_stats,
)

TEMPDB_STATS = CollectorSpec(
    name="mssql_tempdb_stats",
    query="""SELECT
    (SELECT COUNT(*) FROM tempdb.sys.database_files WHERE type = 0) AS data_file_count,
    name AS file_name,
    type_desc AS file_type,
    (size * CAST(8 AS BIGINT)) AS size_kb,
    (FILEPROPERTY(name, 'SpaceUsed') * CAST(8 AS BIGINT)) AS space_used_kb
FROM tempdb.sys.database_files
UNION ALL
SELECT
    0,
    'VersionStore',
    'VersionStore',
    0,
    (SELECT SUM(version_store_reserved_page_count) * 8 FROM sys.dm_db_file_space_usage WHERE database_id = 2)""",
    gauges=(
        GaugeSpec("mssql_tempdb_file_count", "Number of TempDB data files"),
        GaugeSpec("mssql_tempdb_file_size_kb", "TempDB file size in KB", ("file_name", "file_type")),
        GaugeSpec("mssql_tempdb_space_used_kb", "TempDB space used in KB", ("file_name",)),
        GaugeSpec("mssql_tempdb_version_store_mb", "TempDB version store size in MB"),
    ),
    collect=collect_tempdb_stats,
)

DISK_LATENCY = CollectorSpec(
    name="mssql_disk_latency",
    query="""SELECT
    DB_NAME(vfs.database_id) AS database_name,
    CASE WHEN mf.type = 0 THEN 'DATA' ELSE 'LOG' END AS file_type,
    CASE WHEN vfs.num_of_reads = 0 THEN 0 ELSE (vfs.io_stall_read_ms / vfs.num_of_reads) END AS read_latency_ms,
    CASE WHEN vfs.num_of_writes = 0 THEN 0 ELSE (vfs.io_stall_write_ms / vfs.num_of_writes) END AS write_latency_ms
FROM sys.dm_io_virtual_file_stats(NULL, NULL) vfs
INNER JOIN sys.master_files mf ON vfs.database_id = mf.database_id AND vfs.file_id = mf.file_id
WHERE vfs.database_id > 4""",
    gauges=(
        GaugeSpec("mssql_disk_read_latency_ms", "Average disk read latency in milliseconds", ("database", "file_type")),
        GaugeSpec("mssql_disk_write_latency_ms", "Average disk write latency in milliseconds", ("database", "file_type")),
    ),
    collect=collect_disk_latency,
)

BUFFER_CACHE_HIT_RATIO = CollectorSpec(
    name="mssql_buffer_cache_hit_ratio",
    query="""SELECT
    (CAST(cntr_value AS DECIMAL(16,2)) /
     (SELECT cntr_value FROM sys.dm_os_performance_counters
      WHERE counter_name = 'Buffer cache hit ratio base'
      AND object_name LIKE '%Buffer Manager%')) * 100 AS hit_ratio_percent
FROM sys.dm_os_performance_counters
WHERE counter_name = 'Buffer cache hit ratio'
AND object_name LIKE '%Buffer Manager%'""",
    gauges=(GaugeSpec("mssql_buffer_cache_hit_ratio_percent", "Buffer cache hit ratio percentage"),),
    collect=collect_buffer_cache_hit_ratio,
)
