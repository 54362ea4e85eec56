import re
from decimal import Decimal

import pytest

from mssql_exporter.collectors import DEFAULT_COLLECTORS, LIVENESS_COLLECTOR, build_registry
from mssql_exporter.collectors.base import CollectorRegistry, CollectorSpec, GaugeSpec
from mssql_exporter.collectors.instance import parse_product_version


@pytest.fixture
def registry(metrics):
    return build_registry(metrics)


def test_default_catalog_order_and_names(registry):
    names = registry.names()
    assert names[0] == LIVENESS_COLLECTOR
    assert len(names) == len(set(names)) == 36
    assert names[-1] == "mssql_statistics_age"
    assert [name for name, _ in registry.items()] == names
    # items() can be walked again on the next scrape
    assert [name for name, _ in registry.items()] == names


def test_every_collector_owns_gauges(registry):
    for collector in registry:
        assert collector.query.strip()
        assert collector.instruments


def test_gauge_names_are_unique_across_collectors():
    names = [g.name for spec in DEFAULT_COLLECTORS for g in spec.gauges]
    assert len(names) == len(set(names))


def test_registry_rejects_duplicates_and_late_registration(metrics):
    spec = CollectorSpec("sample_collector", "SELECT 1", (GaugeSpec("sample_value", "sample gauge"),), lambda rows, m: None)
    registry = CollectorRegistry()
    registry.register(spec.build(metrics))
    with pytest.raises(ValueError):
        registry.register(registry.get("sample_collector"))
    registry.seal()
    with pytest.raises(RuntimeError):
        registry.register(registry.get("sample_collector"))


@pytest.mark.parametrize("value, expected", [
    ("15.0.4153.1", (15, 0)),
    ("14.0.3465.1", (14, 0)),
    ("16.1", (16, 1)),
    ("11", (11, 0)),
])
def test_parse_product_version(value, expected):
    assert parse_product_version(value) == expected


def test_instance_collectors(registry, metrics):
    registry.get("mssql_up").map([(1,)])
    registry.get("mssql_product_version").map([("15.0.4153.1", "15.0.4153.1")])
    registry.get("mssql_instance_local_time").map([(1700000000,)])
    registry.get("mssql_deadlocks").map([(4,)])
    registry.get("mssql_cpu_scheduler_stats").map([(12, 3, 99999)])

    assert metrics.sample("mssql_up") == 1.0
    assert metrics.sample("mssql_product_version") == 15.0
    assert metrics.sample("mssql_instance_local_time") == 1700000000.0
    assert metrics.sample("mssql_deadlocks") == 4.0
    assert metrics.sample("mssql_cpu_usage_percent") == 12.0
    assert metrics.sample("mssql_scheduler_runnable_tasks_count") == 3.0
    assert metrics.sample("mssql_context_switches_count") == 99999.0


def test_connections_use_current_state_label(registry, metrics):
    registry.get("mssql_connections").map([("master", 3), ("app", 12)])
    assert metrics.sample("mssql_connections", {"database": "app", "state": "current"}) == 12.0


def test_io_stall_fans_out_by_type(registry, metrics):
    registry.get("mssql_io_stall").map([("app", 10, 20, 35, 2, 3)])
    assert metrics.sample("mssql_io_stall_total", {"database": "app"}) == 35.0
    for stall_type, expected in (("read", 10), ("write", 20), ("queued_read", 2), ("queued_write", 3)):
        assert metrics.sample("mssql_io_stall", {"database": "app", "type": stall_type}) == expected


def test_buffer_manager_columns(registry, metrics):
    registry.get("mssql_buffer_manager").map([(100, 200, 300, 400, 500)])
    assert metrics.sample("mssql_page_read_total") == 100.0
    assert metrics.sample("mssql_page_write_total") == 200.0
    assert metrics.sample("mssql_page_life_expectancy") == 300.0
    assert metrics.sample("mssql_lazy_write_total") == 400.0
    assert metrics.sample("mssql_page_checkpoint_total") == 500.0


def test_database_backups_fan_out_sizes(registry, metrics):
    row = ("app", 1700000000, 0, 1700003600, 5, -1, 1, Decimal("12.50"), Decimal("0"), Decimal("0.25"))
    registry.get("mssql_database_backups").map([row])
    assert metrics.sample("mssql_database_backup_age_full_hours", {"database": "app"}) == 5.0
    assert metrics.sample("mssql_database_backup_age_diff_hours", {"database": "app"}) == -1.0
    assert metrics.sample("mssql_database_backup_size_mb", {"database": "app", "type": "full"}) == 12.5
    assert metrics.sample("mssql_database_backup_size_mb", {"database": "app", "type": "log"}) == 0.25


def test_boolean_cells_become_flags(registry, metrics):
    registry.get("mssql_database_properties").map([("app", 1, 150, True, False, 2)])
    registry.get("mssql_sql_agent_jobs").map([("nightly", "ABC-1", False, -1, 0, 0, 0)])
    assert metrics.sample("mssql_database_auto_close", {"database": "app"}) == 1.0
    assert metrics.sample("mssql_database_auto_shrink", {"database": "app"}) == 0.0
    labels = {"job_name": "nightly", "job_id": "ABC-1"}
    assert metrics.sample("mssql_sql_agent_job_enabled", labels) == 0.0
    assert metrics.sample("mssql_sql_agent_job_status", labels) == -1.0


def test_availability_groups_skip_database_gauges_without_database(registry, metrics):
    registry.get("mssql_availability_groups").map([
        ("ag1", "node-a", 1, 2, "N/A", 0, 0, 0),
        ("ag1", "node-b", 2, 2, "app", 2, 16, 8),
    ])
    assert metrics.sample("mssql_ag_replica_role", {"ag_name": "ag1", "replica_server": "node-a"}) == 1.0
    assert metrics.sample("mssql_ag_replica_sync_state", {"ag_name": "ag1", "replica_server": "node-a", "database": "N/A"}) is None
    assert metrics.sample("mssql_ag_redo_queue_size_kb", {"ag_name": "ag1", "replica_server": "node-b", "database": "app"}) == 8.0


def test_blocking_sessions_sum_counts(registry, metrics):
    registry.get("mssql_blocking_sessions").map([(2, "app", "LCK_M_X", 500), (1, "app", "LCK_M_S", 100)])
    assert metrics.sample("mssql_blocked_session_count") == 3.0
    assert metrics.sample("mssql_blocking_session_wait_time_ms", {"database": "app", "wait_type": "LCK_M_S"}) == 100.0


def test_tempdb_version_store_row(registry, metrics):
    registry.get("mssql_tempdb_stats").map([
        (2, "tempdev", "ROWS", 8192, None),
        (2, "templog", "LOG", 2048, 512),
        (0, "VersionStore", "VersionStore", 0, 2048),
    ])
    assert metrics.sample("mssql_tempdb_file_count") == 2.0
    assert metrics.sample("mssql_tempdb_space_used_kb", {"file_name": "tempdev"}) == 0.0
    assert metrics.sample("mssql_tempdb_file_size_kb", {"file_name": "templog", "file_type": "LOG"}) == 2048.0
    assert metrics.sample("mssql_tempdb_version_store_mb") == 2.0
    assert metrics.sample("mssql_tempdb_space_used_kb", {"file_name": "VersionStore"}) is None


def test_long_running_sessions_stringify_session_id(registry, metrics):
    registry.get("mssql_long_running_sessions").map([(1, 57, "app", "running", 600)])
    assert metrics.sample("mssql_long_running_session_count") == 1.0
    labels = {"session_id": "57", "database": "app", "status": "running"}
    assert metrics.sample("mssql_long_running_session_duration_seconds", labels) == 600.0


def test_unexpected_row_shape_raises(registry):
    with pytest.raises(ValueError):
        registry.get("mssql_connections").map([("master",)])


def test_liveness_collector_is_registered(registry):
    assert LIVENESS_COLLECTOR in registry
    assert "mssql_nonexistent" not in registry


@pytest.mark.parametrize("value, expected", [
    ("15.0.4153.1", 15.0),
    ("16.1.1000.6", 16.01),
    ("16.10.1000.6", 16.1),
])
def test_product_version_keeps_minor_distinct(registry, metrics, value, expected):
    registry.get("mssql_product_version").map([(value, value)])
    assert metrics.sample("mssql_product_version") == pytest.approx(expected)


CREATE_TEMP = re.compile(r"CREATE\s+TABLE\s+(#\w+)", re.IGNORECASE)


def test_temp_tables_are_dropped_before_create_and_after_use():
    checked = 0
    for spec in DEFAULT_COLLECTORS:
        for match in CREATE_TEMP.finditer(spec.query):
            table = re.escape(match.group(1))
            before, after = spec.query[:match.start()], spec.query[match.end():]
            guard = rf"IF\s+OBJECT_ID\('tempdb\.\.{table}'\)\s+IS\s+NOT\s+NULL\s+DROP\s+TABLE\s+{table}\s*;"
            assert re.search(guard, before, re.IGNORECASE), spec.name
            assert re.search(rf"DROP\s+TABLE\s+{table}\s*;?\s*$", after, re.IGNORECASE), spec.name
            checked += 1
    assert checked == 5


def test_client_connections(registry, metrics):
    registry.get("mssql_client_connections").map([("web-1", "app", 7), ("web-2", "app", 2)])
    assert metrics.sample("mssql_client_connections", {"client": "web-1", "database": "app"}) == 7.0
    assert metrics.sample("mssql_client_connections", {"client": "web-2", "database": "app"}) == 2.0


def test_batch_requests(registry, metrics):
    registry.get("mssql_batch_requests").map([(1234,)])
    assert metrics.sample("mssql_batch_requests") == 1234.0


@pytest.mark.parametrize("count", [3, 0, -1])
def test_security_stats_passes_count_through(registry, metrics, count):
    registry.get("mssql_security_stats").map([(count,)])
    assert metrics.sample("mssql_failed_login_count") == float(count)


def test_database_filesize(registry, metrics):
    registry.get("mssql_database_filesize").map([
        ("app", "app_data", 0, "/var/opt/mssql/data/app.mdf", 8192),
        ("app", "app_log", 1, "/var/opt/mssql/data/app_log.ldf", 2048),
    ])
    labels = {"database": "app", "logicalname": "app_log", "type": "1", "filename": "/var/opt/mssql/data/app_log.ldf"}
    assert metrics.sample("mssql_database_filesize", labels) == 2048.0
    labels = {"database": "app", "logicalname": "app_data", "type": "0", "filename": "/var/opt/mssql/data/app.mdf"}
    assert metrics.sample("mssql_database_filesize", labels) == 8192.0


def test_transactions(registry, metrics):
    registry.get("mssql_transactions").map([("app", 42), ("tempdb", 5)])
    assert metrics.sample("mssql_transactions", {"database": "app"}) == 42.0
    assert metrics.sample("mssql_transactions", {"database": "tempdb"}) == 5.0


def test_transaction_log_stats(registry, metrics):
    registry.get("mssql_transaction_log_stats").map([("app", Decimal("2.50"), Decimal("10.00"), Decimal("25.00"), 2, 16)])
    labels = {"database": "app"}
    assert metrics.sample("mssql_log_space_used_mb", labels) == 2.5
    assert metrics.sample("mssql_log_space_total_mb", labels) == 10.0
    assert metrics.sample("mssql_log_space_used_percent", labels) == 25.0
    assert metrics.sample("mssql_log_reuse_wait", labels) == 2.0
    assert metrics.sample("mssql_log_vlf_count", labels) == 16.0


def test_database_size_growth(registry, metrics):
    registry.get("mssql_database_size_growth").map([("app", Decimal("100.00"), Decimal("20.00"), Decimal("60.00"), Decimal("40.00"))])
    labels = {"database": "app"}
    assert metrics.sample("mssql_database_data_size_mb", labels) == 100.0
    assert metrics.sample("mssql_database_log_size_mb", labels) == 20.0
    assert metrics.sample("mssql_database_data_used_mb", labels) == 60.0
    assert metrics.sample("mssql_database_data_free_mb", labels) == 40.0


def test_os_process_memory(registry, metrics):
    registry.get("mssql_os_process_memory").map([(120, 87)])
    assert metrics.sample("mssql_page_fault_count") == 120.0
    assert metrics.sample("mssql_memory_utilization_percentage") == 87.0


def test_wait_stats(registry, metrics):
    registry.get("mssql_wait_stats").map([("LCK_M_X", 900, 12, "Lock"), ("WRITELOG", 300, 40, "IO")])
    assert metrics.sample("mssql_wait_time_ms", {"wait_type": "LCK_M_X", "category": "Lock"}) == 900.0
    assert metrics.sample("mssql_wait_count", {"wait_type": "LCK_M_X", "category": "Lock"}) == 12.0
    assert metrics.sample("mssql_wait_count", {"wait_type": "WRITELOG", "category": "IO"}) == 40.0


def test_disk_latency(registry, metrics):
    registry.get("mssql_disk_latency").map([("app", "DATA", 4, 9), ("app", "LOG", 0, 2)])
    assert metrics.sample("mssql_disk_read_latency_ms", {"database": "app", "file_type": "DATA"}) == 4.0
    assert metrics.sample("mssql_disk_write_latency_ms", {"database": "app", "file_type": "DATA"}) == 9.0
    assert metrics.sample("mssql_disk_write_latency_ms", {"database": "app", "file_type": "LOG"}) == 2.0


def test_buffer_cache_hit_ratio(registry, metrics):
    registry.get("mssql_buffer_cache_hit_ratio").map([(Decimal("99.50"),)])
    assert metrics.sample("mssql_buffer_cache_hit_ratio_percent") == 99.5


def test_blocking_details_stringify_session_ids(registry, metrics):
    registry.get("mssql_blocking_details").map([(61, 55, "app", "LCK_M_U", 1500)])
    labels = {"blocked_session_id": "61", "blocking_session_id": "55", "database": "app", "wait_type": "LCK_M_U"}
    assert metrics.sample("mssql_blocking_session_id", labels) == 1500.0


def test_top_queries(registry, metrics):
    registry.get("mssql_top_queries").map([("0x1A2B3C4D5E6F7081", "app", 50, 1200, 2500, 50)])
    labels = {"query_hash": "0x1A2B3C4D5E6F7081", "database": "app"}
    assert metrics.sample("mssql_query_execution_count", labels) == 50.0
    assert metrics.sample("mssql_query_total_cpu_ms", labels) == 1200.0
    assert metrics.sample("mssql_query_total_elapsed_ms", labels) == 2500.0
    assert metrics.sample("mssql_query_avg_elapsed_ms", labels) == 50.0


def test_missing_indexes(registry, metrics):
    registry.get("mssql_missing_indexes").map([("app", "orders", "42", 1234.5)])
    labels = {"database": "app", "table": "orders", "index_handle": "42"}
    assert metrics.sample("mssql_missing_index_impact", labels) == 1234.5


def test_index_fragmentation(registry, metrics):
    registry.get("mssql_index_fragmentation").map([("app", "orders", "IX_orders_date", Decimal("37.25"), 1500)])
    labels = {"database": "app", "table": "orders", "index_name": "IX_orders_date"}
    assert metrics.sample("mssql_index_fragmentation_percent", labels) == 37.25
    assert metrics.sample("mssql_index_page_count", labels) == 1500.0


def test_statistics_age(registry, metrics):
    registry.get("mssql_statistics_age").map([("app", "orders", "_WA_Sys_00000002", 30)])
    labels = {"database": "app", "table": "orders", "stats_name": "_WA_Sys_00000002"}
    assert metrics.sample("mssql_statistics_days_old", labels) == 30.0
