"""The diagnostics gathered on every scrape, in execution order."""

from ..metrics import MetricRegistry
from . import agent, availability, databases, instance, performance, sessions, tuning
from .base import Collector, CollectorRegistry, CollectorSpec, GaugeSpec

LIVENESS_COLLECTOR = "mssql_up"
LIVENESS_GAUGE = "mssql_up"

# liveness stays first so a scrape reports mssql_up before anything slow runs
DEFAULT_COLLECTORS: tuple[CollectorSpec, ...] = (
    instance.UP,
    instance.PRODUCT_VERSION,
    instance.INSTANCE_LOCAL_TIME,
    sessions.CONNECTIONS,
    sessions.CLIENT_CONNECTIONS,
    instance.DEADLOCKS,
    instance.USER_ERRORS,
    instance.KILL_CONNECTION_ERRORS,
    databases.DATABASE_STATE,
    databases.LOG_GROWTHS,
    databases.DATABASE_FILESIZE,
    performance.BUFFER_MANAGER,
    performance.IO_STALL,
    instance.BATCH_REQUESTS,
    databases.TRANSACTIONS,
    performance.OS_PROCESS_MEMORY,
    performance.OS_SYS_MEMORY,
    agent.SQL_AGENT_JOBS,
    databases.DATABASE_BACKUPS,
    availability.AVAILABILITY_GROUPS,
    sessions.BLOCKING_SESSIONS,
    performance.WAIT_STATS,
    databases.DATABASE_PROPERTIES,
    performance.TEMPDB_STATS,
    databases.TRANSACTION_LOG_STATS,
    instance.SECURITY_STATS,
    instance.CPU_SCHEDULER_STATS,
    databases.DATABASE_SIZE_GROWTH,
    tuning.TOP_QUERIES,
    tuning.MISSING_INDEXES,
    tuning.INDEX_FRAGMENTATION,
    sessions.LONG_RUNNING_SESSIONS,
    performance.DISK_LATENCY,
    performance.BUFFER_CACHE_HIT_RATIO,
    sessions.BLOCKING_DETAILS,
    tuning.STATISTICS_AGE,
)


def build_registry(metrics: MetricRegistry, specs=DEFAULT_COLLECTORS) -> CollectorRegistry:
    """Create every collector's gauges on ``metrics`` and register the collectors in order."""
    registry = CollectorRegistry()
    for spec in specs:
        registry.register(spec.build(metrics))
    registry.seal()
    return registry


__all__ = [
    "Collector",
    "CollectorRegistry",
    "CollectorSpec",
    "GaugeSpec",
    "DEFAULT_COLLECTORS",
    "LIVENESS_COLLECTOR",
    "LIVENESS_GAUGE",
    "build_registry",
]
