"""Integer metrics supplied from outside the database.

Some deployments know things about a server that Postgres does not report
itself, such as the current Aurora capacity units or the connection count
seen by the cloud provider. Those are plugged in as :class:`IntegerSource`
objects; fetching them (and any credentials they need) is the source's
business.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pgspine.collectors.base import NAMESPACE, CollectorConfig, ScrapeContext
from pgspine.core.errors import CollectorError, NoDataError
from pgspine.core.instance import Instance
from pgspine.core.sink import MetricSink, ValueType

CAPACITY_METRIC = f"{NAMESPACE}_rds_current_capacity"
CONNECTIONS_METRIC = f"{NAMESPACE}_rds_database_connections"


@runtime_checkable
class IntegerSource(Protocol):
    async def read(self) -> int: ...


class StaticIntegerSource:
    """A source that always returns the same value."""

    def __init__(self, value: int):
        self.value = value

    async def read(self) -> int:
        return self.value


class ExternalCollector:
    """Emits ``pg_rds_current_capacity`` and ``pg_rds_database_connections``.

    The sources are handed in programmatically, usually through
    ``Exporter(capacity_source=..., connections_source=...)``. Without any the
    collector reports no data.
    """

    def __init__(
        self,
        config: CollectorConfig,
        *,
        capacity: IntegerSource | None = None,
        connections: IntegerSource | None = None,
    ):
        self.logger = config.logger
        self.sources = [
            (CAPACITY_METRIC, "Current Aurora capacity units", capacity),
            (CONNECTIONS_METRIC, "Current Aurora database connections", connections),
        ]

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None:
        configured = [(name, help_text, source) for name, help_text, source in self.sources if source is not None]
        if not configured:
            raise NoDataError("no external metric sources configured")

        for name, help_text, source in configured:
            try:
                value = await source.read()
            except Exception as exc:
                raise CollectorError(f"error reading {name}: {exc}", cause=exc) from exc
            sink.emit(name, help_text, float(value), value_type=ValueType.GAUGE)


__all__ = ["IntegerSource", "StaticIntegerSource", "ExternalCollector"]
