"""``pg_database``: on-disk size of every database."""

from __future__ import annotations

from pgspine.collectors.base import CollectorConfig, ScrapeContext, metric_name
from pgspine.core.errors import CollectorError
from pgspine.core.instance import DRIVER_ERRORS, Instance
from pgspine.core.sink import MetricSink, ValueType
from pgspine.mapping.coercion import db_to_float

SUBSYSTEM = "database"

DATABASE_SIZE_QUERY = (
    "SELECT pg_database.datname, pg_database_size(pg_database.datname) FROM pg_database;"
)


class DatabaseCollector:
    def __init__(self, config: CollectorConfig):
        self.logger = config.logger
        self.exclude_databases = set(config.exclude_databases)

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        db = instance.get_db()
        try:
            rows = await db.fetch(DATABASE_SIZE_QUERY, timeout=ctx.remaining())
        except DRIVER_ERRORS as exc:
            raise CollectorError(f"error querying database sizes: {exc}", cause=exc) from exc

        for row in rows:
            datname, size = row[0], row[1]
            if datname is None or datname in self.exclude_databases:
                continue
            value, ok = db_to_float(size)
            if not ok:
                self.logger.info("database.size_unparsable", datname=datname)
                continue
            sink.emit(
                metric_name(SUBSYSTEM, "size_bytes"),
                "Disk space used by the database",
                value,
                value_type=ValueType.GAUGE,
                labels={"datname": str(datname)},
            )
