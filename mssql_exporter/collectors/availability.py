import logging

from .base import CollectorSpec, GaugeSpec

log = logging.getLogger("metrics")

NO_DATABASE = "N/A"


def collect_availability_groups(rows, metrics):
    for ag_name, replica_server, role, sync_health, database, sync_state, send_queue, redo_queue in rows:
        log.debug(
            "fetched AG info %s: replica=%s database=%s role=%s sync_state=%s",
            ag_name, replica_server, database, role, sync_state,
        )
        metrics["mssql_ag_replica_role"].labels(ag_name=ag_name, replica_server=replica_server).set(role)
        metrics["mssql_ag_replica_sync_health"].labels(ag_name=ag_name, replica_server=replica_server).set(sync_health)

        if database == NO_DATABASE:
            continue
        labels = {"ag_name": ag_name, "replica_server": replica_server, "database": database}
        metrics["mssql_ag_replica_sync_state"].labels(**labels).set(sync_state)
        metrics["mssql_ag_log_send_queue_size_kb"].labels(**labels).set(send_queue)
        metrics["mssql_ag_redo_queue_size_kb"].labels(**labels).set(redo_queue)


AVAILABILITY_GROUPS = CollectorSpec(
    name="mssql_availability_groups",
    query="""IF EXISTS (SELECT 1 FROM sys.dm_hadr_availability_replica_states)
BEGIN
    SELECT
        ag.name AS ag_name,
        ar.replica_server_name,
        rs.role,
        rs.synchronization_health,
        ISNULL(DB_NAME(drs.database_id), 'N/A') AS database_name,
        ISNULL(drs.synchronization_state, 0) AS sync_state,
        ISNULL(drs.log_send_queue_size, 0) AS log_send_queue_size,
        ISNULL(drs.redo_queue_size, 0) AS redo_queue_size
    FROM sys.dm_hadr_availability_replica_states rs
    INNER JOIN sys.availability_replicas ar ON rs.replica_id = ar.replica_id
    INNER JOIN sys.availability_groups ag ON ar.group_id = ag.group_id
    LEFT JOIN sys.dm_hadr_database_replica_states drs ON rs.replica_id = drs.replica_id
END
ELSE
BEGIN
    SELECT NULL, NULL, NULL, NULL, NULL, NULL, NULL, NULL WHERE 1=0
END""",
    gauges=(
        GaugeSpec(
            "mssql_ag_replica_role",
            "Availability group replica role (0=Resolving, 1=Primary, 2=Secondary)",
            ("ag_name", "replica_server"),
        ),
        GaugeSpec(
            "mssql_ag_replica_sync_state",
            "Availability group replica synchronization state (0=NotSynchronizing, 1=Synchronizing, 2=Synchronized, "
            "3=Reverting, 4=Initializing)",
            ("ag_name", "replica_server", "database"),
        ),
        GaugeSpec(
            "mssql_ag_replica_sync_health",
            "Availability group replica synchronization health (0=NotHealthy, 1=PartiallyHealthy, 2=Healthy)",
            ("ag_name", "replica_server"),
        ),
        GaugeSpec(
            "mssql_ag_log_send_queue_size_kb",
            "Availability group log send queue size in KB",
            ("ag_name", "replica_server", "database"),
        ),
        GaugeSpec(
            "mssql_ag_redo_queue_size_kb",
            "Availability group redo queue size in KB",
            ("ag_name", "replica_server", "database"),
        ),
    ),
    collect=collect_availability_groups,
)
