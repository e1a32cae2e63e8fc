"""``pg_postmaster``: server start time."""

from __future__ import annotations

import math

from pgspine.collectors.base import CollectorConfig, ScrapeContext, metric_name
from pgspine.core.errors import CollectorError
from pgspine.core.instance import DRIVER_ERRORS, Instance
from pgspine.core.sink import MetricSink, ValueType
from pgspine.mapping.coercion import db_to_float

SUBSYSTEM = "postmaster"

POSTMASTER_QUERY = "SELECT extract(epoch from pg_postmaster_start_time) from pg_postmaster_start_time();"


class PostmasterCollector:
    def __init__(self, config: CollectorConfig):
        self.logger = config.logger

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        db = instance.get_db()
        try:
            started = await db.fetchval(POSTMASTER_QUERY, timeout=ctx.remaining())
        except DRIVER_ERRORS as exc:
            raise CollectorError(f"error querying postmaster start time: {exc}", cause=exc) from exc

        value, ok = db_to_float(started)
        if not ok or math.isnan(value):
            value = 0.0
        sink.emit(
            metric_name(SUBSYSTEM, "start_time_seconds"),
            "Time at which postmaster started",
            value,
            value_type=ValueType.GAUGE,
        )
