"""``pg_stat_statements``: the most expensive statements.

Disabled by default: every distinct statement becomes its own series.
Reports no data when the extension is not installed.
"""

from __future__ import annotations

from packaging.version import Version

from pgspine.collectors.base import CollectorConfig, ScrapeContext, metric_name
from pgspine.core.errors import CollectorError, NoDataError
from pgspine.core.instance import DRIVER_ERRORS, Instance
from pgspine.core.sink import MetricSink, ValueType
from pgspine.mapping.coercion import db_to_float, db_to_string

SUBSYSTEM = "stat_statements"

EXTENSION_QUERY = "SELECT count(*) FROM pg_extension WHERE extname = 'pg_stat_statements';"

_QUERY_TEMPLATE = """SELECT
    pg_get_userbyid(userid) AS user,
    pg_database.datname,
    pg_stat_statements.queryid,
    {query_select}
    pg_stat_statements.calls AS calls_total,
    pg_stat_statements.{total_time} / 1000.0 AS seconds_total,
    pg_stat_statements.rows AS rows_total,
    pg_stat_statements.{read_time} / 1000.0 AS block_read_seconds_total,
    pg_stat_statements.{write_time} / 1000.0 AS block_write_seconds_total
FROM pg_stat_statements
JOIN pg_database
    ON pg_database.oid = pg_stat_statements.dbid
WHERE
    {total_time} > (
    SELECT percentile_cont(0.1)
        WITHIN GROUP (ORDER BY {total_time})
        FROM pg_stat_statements
    )
ORDER BY seconds_total DESC
LIMIT 100;"""

# column → help text, in query order
COUNTERS = {
    "calls_total": "Number of times executed",
    "seconds_total": "Total time spent in the statement, in seconds",
    "rows_total": "Total number of rows retrieved or affected by the statement",
    "block_read_seconds_total": "Total time the statement spent reading blocks, in seconds",
    "block_write_seconds_total": "Total time the statement spent writing blocks, in seconds",
}

_PG13 = Version("13.0.0")
_PG17 = Version("17.0.0")


def build_query(version: Version, include_query: bool = False, query_length: int = 120) -> str:
    """The statements query for ``version``, optionally selecting the text."""
    if version >= _PG17:
        total_time, read_time, write_time = "total_exec_time", "shared_blk_read_time", "shared_blk_write_time"
    elif version >= _PG13:
        total_time, read_time, write_time = "total_exec_time", "blk_read_time", "blk_write_time"
    else:
        total_time, read_time, write_time = "total_time", "blk_read_time", "blk_write_time"
    query_select = f"LEFT(pg_stat_statements.query, {int(query_length)}) AS query," if include_query else ""
    return _QUERY_TEMPLATE.format(
        query_select=query_select,
        total_time=total_time,
        read_time=read_time,
        write_time=write_time,
    )


class StatStatementsCollector:
    def __init__(self, config: CollectorConfig, *, include_query: bool = False, query_length: int = 120):
        self.logger = config.logger
        self.include_query = include_query
        self.query_length = query_length

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        db = instance.get_db()
        try:
            installed = await db.fetchval(EXTENSION_QUERY, timeout=ctx.remaining())
            if not installed:
                raise NoDataError("pg_stat_statements extension is not installed")
            query = build_query(instance.version or Version("0.0.0"), self.include_query, self.query_length)
            rows = await db.fetch(query, timeout=ctx.remaining())
        except DRIVER_ERRORS as exc:
            raise CollectorError(f"error querying pg_stat_statements: {exc}", cause=exc) from exc

        seen_query_ids: set[str] = set()
        for row in rows:
            labels = {
                "user": _label(row["user"]),
                "datname": _label(row["datname"]),
                "queryid": _label(row["queryid"]),
            }
            for column, help_text in COUNTERS.items():
                value, ok = db_to_float(row[column])
                if not ok or value != value:
                    value = 0.0
                sink.emit(
                    metric_name(SUBSYSTEM, column),
                    help_text,
                    value,
                    value_type=ValueType.COUNTER,
                    labels=labels,
                )

            if self.include_query and labels["queryid"] not in seen_query_ids:
                seen_query_ids.add(labels["queryid"])
                sink.emit(
                    metric_name(SUBSYSTEM, "query_id"),
                    "SQL Query to queryid mapping",
                    1.0,
                    value_type=ValueType.GAUGE,
                    labels={"queryid": labels["queryid"], "query": _label(row["query"])},
                )


def _label(value: object) -> str:
    if value is None:
        return "unknown"
    return db_to_string(value)[0]
