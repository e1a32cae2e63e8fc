"""Built-in namespace definitions and their version-ranged queries.

These cover the statistics views every Postgres server has. They can be
switched off with ``PG_EXPORTER_DISABLE_DEFAULT_METRICS`` and extended or
overridden by custom query files.
"""

from __future__ import annotations

from pgspine.core.version import VersionRange
from pgspine.mapping.overrides import QueryOverride
from pgspine.mapping.usage import ColumnMapping, ColumnUsage, NamespaceDefinition

DISCARD = ColumnUsage.DISCARD
LABEL = ColumnUsage.LABEL
COUNTER = ColumnUsage.COUNTER
GAUGE = ColumnUsage.GAUGE


def _col(usage: ColumnUsage, description: str, versions: str | None = None) -> ColumnMapping:
    return ColumnMapping(
        usage=usage,
        description=description,
        supported_versions=VersionRange(versions) if versions else None,
    )


def _namespace(**columns: ColumnMapping) -> NamespaceDefinition:
    return NamespaceDefinition(column_mappings=dict(columns))


def builtin_metric_maps() -> dict[str, NamespaceDefinition]:
    """Fresh copies of the built-in namespace definitions."""
    return {
        "pg_stat_bgwriter": _namespace(
            checkpoints_timed=_col(COUNTER, "Number of scheduled checkpoints that have been performed"),
            checkpoints_req=_col(COUNTER, "Number of requested checkpoints that have been performed"),
            checkpoint_write_time=_col(
                COUNTER,
                "Total amount of time that has been spent in the portion of checkpoint processing where files "
                "are written to disk, in milliseconds",
            ),
            checkpoint_sync_time=_col(
                COUNTER,
                "Total amount of time that has been spent in the portion of checkpoint processing where files "
                "are synchronized to disk, in milliseconds",
            ),
            buffers_checkpoint=_col(COUNTER, "Number of buffers written during checkpoints"),
            buffers_clean=_col(COUNTER, "Number of buffers written by the background writer"),
            maxwritten_clean=_col(
                COUNTER,
                "Number of times the background writer stopped a cleaning scan because it had written too many buffers",
            ),
            buffers_backend=_col(COUNTER, "Number of buffers written directly by a backend"),
            buffers_backend_fsync=_col(
                COUNTER,
                "Number of times a backend had to execute its own fsync call "
                "(normally the background writer handles those even when the backend does its own write)",
            ),
            buffers_alloc=_col(COUNTER, "Number of buffers allocated"),
            stats_reset=_col(COUNTER, "Time at which these statistics were last reset"),
        ),
        "pg_stat_database": _namespace(
            datid=_col(LABEL, "OID of a database"),
            datname=_col(LABEL, "Name of this database"),
            numbackends=_col(
                GAUGE,
                "Number of backends currently connected to this database. This is the only column in this view "
                "that returns a value reflecting current state; all other columns return the accumulated values "
                "since the last reset.",
            ),
            xact_commit=_col(COUNTER, "Number of transactions in this database that have been committed"),
            xact_rollback=_col(COUNTER, "Number of transactions in this database that have been rolled back"),
            blks_read=_col(COUNTER, "Number of disk blocks read in this database"),
            blks_hit=_col(
                COUNTER,
                "Number of times disk blocks were found already in the buffer cache, so that a read was not "
                "necessary (this only includes hits in the PostgreSQL buffer cache, not the operating system's "
                "file system cache)",
            ),
            tup_returned=_col(COUNTER, "Number of rows returned by queries in this database"),
            tup_fetched=_col(COUNTER, "Number of rows fetched by queries in this database"),
            tup_inserted=_col(COUNTER, "Number of rows inserted by queries in this database"),
            tup_updated=_col(COUNTER, "Number of rows updated by queries in this database"),
            tup_deleted=_col(COUNTER, "Number of rows deleted by queries in this database"),
            conflicts=_col(
                COUNTER,
                "Number of queries canceled due to conflicts with recovery in this database. (Conflicts occur "
                "only on standby servers; see pg_stat_database_conflicts for details.)",
            ),
            temp_files=_col(
                COUNTER,
                "Number of temporary files created by queries in this database. All temporary files are counted, "
                "regardless of why the temporary file was created (e.g., sorting or hashing), and regardless of "
                "the log_temp_files setting.",
            ),
            temp_bytes=_col(
                COUNTER,
                "Total amount of data written to temporary files by queries in this database. All temporary files "
                "are counted, regardless of why the temporary file was created, and regardless of the "
                "log_temp_files setting.",
            ),
            deadlocks=_col(COUNTER, "Number of deadlocks detected in this database"),
            blk_read_time=_col(
                COUNTER, "Time spent reading data file blocks by backends in this database, in milliseconds"
            ),
            blk_write_time=_col(
                COUNTER, "Time spent writing data file blocks by backends in this database, in milliseconds"
            ),
            stats_reset=_col(COUNTER, "Time at which these statistics were last reset"),
        ),
        "pg_stat_database_conflicts": _namespace(
            datid=_col(LABEL, "OID of a database"),
            datname=_col(LABEL, "Name of this database"),
            confl_tablespace=_col(
                COUNTER, "Number of queries in this database that have been canceled due to dropped tablespaces"
            ),
            confl_lock=_col(COUNTER, "Number of queries in this database that have been canceled due to lock timeouts"),
            confl_snapshot=_col(
                COUNTER, "Number of queries in this database that have been canceled due to old snapshots"
            ),
            confl_bufferpin=_col(
                COUNTER, "Number of queries in this database that have been canceled due to pinned buffers"
            ),
            confl_deadlock=_col(COUNTER, "Number of queries in this database that have been canceled due to deadlocks"),
        ),
        "pg_locks": _namespace(
            datname=_col(LABEL, "Name of this database"),
            mode=_col(LABEL, "Type of Lock"),
            count=_col(GAUGE, "Number of locks"),
        ),
        "pg_stat_replication": _namespace(
            procpid=_col(DISCARD, "Process ID of a WAL sender process", "<9.2.0"),
            pid=_col(DISCARD, "Process ID of a WAL sender process", ">=9.2.0"),
            usesysid=_col(DISCARD, "OID of the user logged into this WAL sender process"),
            usename=_col(DISCARD, "Name of the user logged into this WAL sender process"),
            application_name=_col(LABEL, "Name of the application that is connected to this WAL sender"),
            client_addr=_col(
                LABEL,
                "IP address of the client connected to this WAL sender. If this field is null, it indicates that "
                "the client is connected via a Unix socket on the server machine.",
            ),
            client_hostname=_col(
                DISCARD,
                "Host name of the connected client, as reported by a reverse DNS lookup of client_addr.",
            ),
            client_port=_col(
                DISCARD,
                "TCP port number that the client is using for communication with this WAL sender, "
                "or -1 if a Unix socket is used",
            ),
            backend_start=_col(
                DISCARD, "Time when this process was started, i.e., when the client connected to this WAL sender"
            ),
            backend_xmin=_col(DISCARD, "The current backend's xmin horizon."),
            state=_col(LABEL, "Current WAL sender state"),
            sent_location=_col(DISCARD, "Last transaction log position sent on this connection", "<10.0.0"),
            write_location=_col(DISCARD, "Last transaction log position written to disk by this standby server", "<10.0.0"),
            flush_location=_col(
                DISCARD, "Last transaction log position flushed to disk by this standby server", "<10.0.0"
            ),
            replay_location=_col(
                DISCARD, "Last transaction log position replayed into the database on this standby server", "<10.0.0"
            ),
            sent_lsn=_col(DISCARD, "Last transaction log position sent on this connection", ">=10.0.0"),
            write_lsn=_col(DISCARD, "Last transaction log position written to disk by this standby server", ">=10.0.0"),
            flush_lsn=_col(DISCARD, "Last transaction log position flushed to disk by this standby server", ">=10.0.0"),
            replay_lsn=_col(
                DISCARD, "Last transaction log position replayed into the database on this standby server", ">=10.0.0"
            ),
            sync_priority=_col(DISCARD, "Priority of this standby server for being chosen as the synchronous standby"),
            sync_state=_col(DISCARD, "Synchronous state of this standby server"),
            slot_name=_col(LABEL, "A unique, cluster-wide identifier for the replication slot", ">=9.2.0"),
            plugin=_col(
                DISCARD,
                "The base name of the shared object containing the output plugin this logical slot is using, "
                "or null for physical slots",
            ),
            slot_type=_col(DISCARD, "The slot type - physical or logical"),
            datoid=_col(DISCARD, "The OID of the database this slot is associated with, or null."),
            database=_col(DISCARD, "The name of the database this slot is associated with, or null."),
            active=_col(DISCARD, "True if this slot is currently actively being used"),
            active_pid=_col(DISCARD, "Process ID of a WAL sender process"),
            xmin=_col(DISCARD, "The oldest transaction that this slot needs the database to retain."),
            catalog_xmin=_col(
                DISCARD, "The oldest transaction affecting the system catalogs that this slot needs the database to retain."
            ),
            restart_lsn=_col(DISCARD, "The address (LSN) of oldest WAL which still might be required by the consumer"),
            pg_current_xlog_location=_col(DISCARD, "pg_current_xlog_location", "<10.0.0"),
            pg_xlog_location_diff=_col(GAUGE, "Lag in bytes between master and slave", ">=9.2.0 <10.0.0"),
            pg_current_wal_lsn=_col(DISCARD, "pg_current_xlog_location", ">=10.0.0"),
            pg_current_wal_lsn_bytes=_col(GAUGE, "WAL position in bytes", ">=10.0.0"),
            pg_wal_lsn_diff=_col(GAUGE, "Lag in bytes between master and slave", ">=10.0.0"),
            confirmed_flush_lsn=_col(
                DISCARD, "LSN position a consumer of a slot has confirmed flushing the data received"
            ),
            write_lag=_col(
                DISCARD,
                "Time elapsed between flushing recent WAL locally and receiving notification that this standby "
                "server has written it (but not yet flushed it or applied it).",
                ">=10.0.0",
            ),
            flush_lag=_col(
                DISCARD,
                "Time elapsed between flushing recent WAL locally and receiving notification that this standby "
                "server has written and flushed it (but not yet applied it).",
                ">=10.0.0",
            ),
            replay_lag=_col(
                DISCARD,
                "Time elapsed between flushing recent WAL locally and receiving notification that this standby "
                "server has written, flushed and applied it.",
                ">=10.0.0",
            ),
        ),
        "pg_replication_slots": _namespace(
            slot_name=_col(LABEL, "Name of the replication slot"),
            database=_col(LABEL, "Name of the database"),
            active=_col(GAUGE, "Flag indicating if the slot is active"),
            pg_xlog_location_diff=_col(GAUGE, "Replication lag in bytes", ">=9.4.0 <10.0.0"),
            pg_wal_lsn_diff=_col(GAUGE, "Replication lag in bytes", ">=10.0.0"),
        ),
        "pg_stat_archiver": _namespace(
            archived_count=_col(COUNTER, "Number of WAL files that have been successfully archived"),
            last_archived_wal=_col(DISCARD, "Name of the last WAL file successfully archived"),
            last_archived_time=_col(DISCARD, "Time of the last successful archive operation"),
            failed_count=_col(COUNTER, "Number of failed attempts for archiving WAL files"),
            last_failed_wal=_col(DISCARD, "Name of the WAL file of the last failed archival operation"),
            last_failed_time=_col(DISCARD, "Time of the last failed archival operation"),
            stats_reset=_col(DISCARD, "Time at which these statistics were last reset"),
            last_archive_age=_col(GAUGE, "Time in seconds since last WAL segment was successfully archived"),
        ),
        "pg_stat_activity": _namespace(
            datname=_col(LABEL, "Name of this database"),
            state=_col(LABEL, "connection state"),
            count=_col(GAUGE, "number of connections in this state"),
            max_tx_duration=_col(GAUGE, "max duration in seconds any active transaction has been running"),
        ),
    }


_PG_LOCKS_QUERY = """
SELECT pg_database.datname, tmp.mode, COALESCE(count, 0) AS count
FROM
    (
      VALUES ('accesssharelock'),
             ('rowsharelock'),
             ('rowexclusivelock'),
             ('shareupdateexclusivelock'),
             ('sharelock'),
             ('sharerowexclusivelock'),
             ('exclusivelock'),
             ('accessexclusivelock'),
             ('sireadlock')
    ) AS tmp(mode) CROSS JOIN pg_database
LEFT JOIN
  (SELECT database, lower(mode) AS mode, count(*) AS count
  FROM pg_locks WHERE database IS NOT NULL
  GROUP BY database, lower(mode)
) AS tmp2
ON tmp.mode = tmp2.mode AND pg_database.oid = tmp2.database ORDER BY 1
"""

_PG_STAT_REPLICATION_WAL_QUERY = """
SELECT *,
    (CASE pg_is_in_recovery() WHEN 't' THEN null ELSE pg_current_wal_lsn() END) AS pg_current_wal_lsn,
    (CASE pg_is_in_recovery() WHEN 't' THEN null
        ELSE pg_wal_lsn_diff(pg_current_wal_lsn(), pg_lsn('0/0'))::float END) AS pg_current_wal_lsn_bytes,
    (CASE pg_is_in_recovery() WHEN 't' THEN null
        ELSE pg_wal_lsn_diff(pg_current_wal_lsn(), replay_lsn)::float END) AS pg_wal_lsn_diff
FROM pg_stat_replication
"""

_PG_STAT_REPLICATION_XLOG_QUERY = """
SELECT *,
    (CASE pg_is_in_recovery() WHEN 't' THEN null ELSE pg_current_xlog_location() END) AS pg_current_xlog_location,
    (CASE pg_is_in_recovery() WHEN 't' THEN null
        ELSE pg_xlog_location_diff(pg_current_xlog_location(), replay_location)::float END) AS pg_xlog_location_diff
FROM pg_stat_replication
"""

_PG_STAT_REPLICATION_LEGACY_QUERY = """
SELECT *,
    (CASE pg_is_in_recovery() WHEN 't' THEN null ELSE pg_current_xlog_location() END) AS pg_current_xlog_location
FROM pg_stat_replication
"""

_PG_REPLICATION_SLOTS_XLOG_QUERY = """
SELECT slot_name, database, active,
    pg_xlog_location_diff(pg_current_xlog_location(), restart_lsn) AS pg_xlog_location_diff
FROM pg_replication_slots
"""

_PG_REPLICATION_SLOTS_WAL_QUERY = """
SELECT slot_name, database, active,
    pg_wal_lsn_diff(pg_current_wal_lsn(), restart_lsn) AS pg_wal_lsn_diff
FROM pg_replication_slots
"""

_PG_STAT_ARCHIVER_QUERY = """
SELECT *,
    extract(epoch from now() - last_archived_time) AS last_archive_age
FROM pg_stat_archiver
"""

_PG_STAT_ACTIVITY_QUERY = """
SELECT
    pg_database.datname,
    tmp.state,
    COALESCE(count, 0) AS count,
    COALESCE(max_tx_duration, 0) AS max_tx_duration
FROM
    (
      VALUES ('active'),
             ('idle'),
             ('idle in transaction'),
             ('idle in transaction (aborted)'),
             ('fastpath function call'),
             ('disabled')
    ) AS tmp(state) CROSS JOIN pg_database
LEFT JOIN
(
    SELECT
        datname,
        state,
        count(*) AS count,
        MAX(EXTRACT(EPOCH FROM now() - xact_start))::float AS max_tx_duration
    FROM pg_stat_activity GROUP BY datname, state) AS tmp2
    ON tmp.state = tmp2.state AND pg_database.datname = tmp2.datname
"""

_PG_STAT_ACTIVITY_LEGACY_QUERY = """
SELECT
    datname,
    'unknown' AS state,
    COALESCE(count(*), 0) AS count,
    COALESCE(MAX(EXTRACT(EPOCH FROM now() - xact_start))::float, 0) AS max_tx_duration
FROM pg_stat_activity GROUP BY datname
"""


def _override(versions: str, query: str) -> QueryOverride:
    return QueryOverride(VersionRange(versions), query.strip())


def builtin_query_overrides() -> dict[str, list[QueryOverride]]:
    """Version-ranged query text for the built-in namespaces that need it."""
    return {
        "pg_locks": [_override(">0.0.0", _PG_LOCKS_QUERY)],
        "pg_stat_replication": [
            _override(">=10.0.0", _PG_STAT_REPLICATION_WAL_QUERY),
            _override(">=9.2.0 <10.0.0", _PG_STAT_REPLICATION_XLOG_QUERY),
            _override("<9.2.0", _PG_STAT_REPLICATION_LEGACY_QUERY),
        ],
        "pg_replication_slots": [
            _override(">=9.4.0 <10.0.0", _PG_REPLICATION_SLOTS_XLOG_QUERY),
            _override(">=10.0.0", _PG_REPLICATION_SLOTS_WAL_QUERY),
        ],
        "pg_stat_archiver": [_override(">=0.0.0", _PG_STAT_ARCHIVER_QUERY)],
        "pg_stat_activity": [
            _override(">=9.2.0", _PG_STAT_ACTIVITY_QUERY),
            _override("<9.2.0", _PG_STAT_ACTIVITY_LEGACY_QUERY),
        ],
    }


__all__ = ["builtin_metric_maps", "builtin_query_overrides"]
