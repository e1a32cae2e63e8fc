"""The collector contract.

A collector is a named unit with one coroutine::

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None

It queries ``instance.get_db()``, writes samples to ``sink`` and returns.
Failure is signalled by raising: :class:`~pgspine.core.errors.NoDataError`
when there is legitimately nothing to report, anything else when broken.
Collectors must not mutate the instance and must not keep per-scrape state,
because one collector object serves every scrape and every target.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pgspine.core.instance import Instance
from pgspine.core.logging import get_logger
from pgspine.core.sink import MetricSink

NAMESPACE = "pg"


def metric_name(subsystem: str, name: str) -> str:
    """``pg_<subsystem>_<name>``."""
    parts = [NAMESPACE, subsystem, name]
    return "_".join(part for part in parts if part)


@dataclass
class CollectorConfig:
    """Handed to every collector factory."""

    logger: Any
    exclude_databases: list[str] = field(default_factory=list)


@dataclass
class ScrapeContext:
    """Per-request information shared by the collectors of one scrape."""

    deadline: float  # time.monotonic() value
    logger: Any = field(default_factory=lambda: get_logger("pgspine.scrape"))

    @classmethod
    def with_timeout(cls, seconds: float, **kwargs: Any) -> ScrapeContext:
        return cls(deadline=time.monotonic() + seconds, **kwargs)

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


@runtime_checkable
class Collector(Protocol):
    """Anything with an ``update`` coroutine of the right shape."""

    async def update(self, ctx: ScrapeContext, instance: Instance, sink: MetricSink) -> None: ...


__all__ = ["Collector", "CollectorConfig", "ScrapeContext", "NAMESPACE", "metric_name"]
