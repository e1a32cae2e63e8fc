"""Scrape Orchestrator: concurrent fan-out of collectors against one target.

WHY
───
A scrape is only as slow as its slowest collector when every collector runs
as its own task. Collectors share one connection, which serializes their
queries, but time spent in the driver, in Python and in the network overlaps.
One collector failing must never cost the others their metrics.

ARCHITECTURE
────────────
::

    ScrapeOrchestrator.scrape(instance, collectors, sink, ctx)
      │
      ├── Setup     instance.setup()        ScrapeSetupError → nothing runs
      ├── Fan-out   one task per collector  wait_for(update, ctx.remaining())
      │               └── ScrapeOutcome     success / no_data / failure
      │               └── meta gauges       duration_seconds + success
      ├── Join      asyncio.gather
      └── Close     unless persistent

    probe(dsn, collectors, ctx, semaphore)
      ├── acquire semaphore under the deadline   ProbeTimeoutError
      ├── fresh Instance → scrape → close
      └── release semaphore (always)

Example::

    orchestrator = ScrapeOrchestrator()
    result = await orchestrator.scrape(Instance(dsn), collectors, MetricSink(), ScrapeContext.with_timeout(10))
    print([o.success for o in result.outcomes])
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from packaging.version import Version

from pgspine.collectors.base import Collector, ScrapeContext, metric_name
from pgspine.core.errors import ProbeTimeoutError, ScrapeSetupError, error_kind, is_no_data
from pgspine.core.instance import Instance
from pgspine.core.logging import get_logger
from pgspine.core.sink import MetricSink, ValueType

logger = get_logger(__name__)

SCRAPE_DURATION_METRIC = metric_name("scrape", "collector_duration_seconds")
SCRAPE_DURATION_HELP = "postgres_exporter: Duration of a collector scrape."
SCRAPE_SUCCESS_METRIC = metric_name("scrape", "collector_success")
SCRAPE_SUCCESS_HELP = "postgres_exporter: Whether a collector succeeded."


@dataclass
class ScrapeOutcome:
    """How one collector fared in one scrape."""

    collector: str
    duration_seconds: float
    success: bool
    no_data: bool = False
    error: str | None = None


@dataclass
class ScrapeResult:
    """Aggregate result of scraping one target."""

    server: str
    version: Version | None
    outcomes: list[ScrapeOutcome] = field(default_factory=list)
    sink: MetricSink | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success and not o.no_data)

    def outcome(self, collector: str) -> ScrapeOutcome | None:
        for o in self.outcomes:
            if o.collector == collector:
                return o
        return None


class ScrapeOrchestrator:
    """Runs a set of collectors against one Instance.

    Parameters
    ----------
    persistent : bool
        Keep the instance connected after the scrape. Otherwise it is
        closed once every collector has finished.
    """

    def __init__(self, *, persistent: bool = False) -> None:
        self.persistent = persistent

    # ── Entry point ──────────────────────────────────────────────────

    async def scrape(
        self,
        instance: Instance,
        collectors: Mapping[str, Collector],
        sink: MetricSink,
        ctx: ScrapeContext,
    ) -> ScrapeResult:
        """Set up ``instance`` and run every collector concurrently.

        Raises:
            ScrapeSetupError: if the connection or version detection fails
        """
        try:
            if not (self.persistent and instance.is_setup):
                await instance.setup(timeout=ctx.remaining())
        except ScrapeSetupError as exc:
            logger.error("scrape.setup_failed", server=instance.server, error=exc.message)
            await instance.close()
            raise

        try:
            outcomes = await asyncio.gather(
                *[self._dispatch(name, collector, instance, sink, ctx) for name, collector in collectors.items()]
            )
        finally:
            if not self.persistent:
                await instance.close()

        result = ScrapeResult(server=instance.server, version=instance.version, outcomes=list(outcomes), sink=sink)
        logger.debug(
            "scrape.complete",
            server=result.server,
            collectors=len(result.outcomes),
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    # ── Dispatch ─────────────────────────────────────────────────────

    async def _dispatch(
        self,
        name: str,
        collector: Collector,
        instance: Instance,
        sink: MetricSink,
        ctx: ScrapeContext,
    ) -> ScrapeOutcome:
        started = time.monotonic()
        error: str | None = None
        no_data = False
        try:
            await asyncio.wait_for(collector.update(ctx, instance, sink), timeout=ctx.remaining())
            success = True
        except asyncio.TimeoutError:
            success = False
            error = "deadline exceeded"
            logger.error(
                "collector.failed",
                collector=name,
                server=instance.server,
                duration_seconds=time.monotonic() - started,
                error=error,
            )
        except Exception as exc:
            success = False
            error = str(exc)
            if is_no_data(exc):
                no_data = True
                logger.debug(
                    "collector.no_data",
                    collector=name,
                    server=instance.server,
                    duration_seconds=time.monotonic() - started,
                    reason=error,
                )
            else:
                logger.error(
                    "collector.failed",
                    collector=name,
                    server=instance.server,
                    duration_seconds=time.monotonic() - started,
                    error=error,
                    kind=error_kind(exc).value,
                    exc_info=True,
                )
        duration = time.monotonic() - started

        labels = {"collector": name}
        sink.emit(SCRAPE_DURATION_METRIC, SCRAPE_DURATION_HELP, duration, value_type=ValueType.GAUGE, labels=labels)
        sink.emit(SCRAPE_SUCCESS_METRIC, SCRAPE_SUCCESS_HELP, 1.0 if success else 0.0, value_type=ValueType.GAUGE, labels=labels)
        return ScrapeOutcome(collector=name, duration_seconds=duration, success=success, no_data=no_data, error=error)


# ── Probe ────────────────────────────────────────────────────────────


async def probe(
    dsn: str,
    collectors: Mapping[str, Collector],
    ctx: ScrapeContext,
    semaphore: asyncio.Semaphore,
    *,
    sink: MetricSink | None = None,
    instance_factory: Callable[[str], Instance] = Instance,
) -> ScrapeResult:
    """Scrape an arbitrary target with a bounded number of open connections.

    The semaphore is acquired before the target connection is opened and is
    released however the scrape ends.

    Raises:
        ProbeTimeoutError: if no slot frees up before the deadline
        ScrapeSetupError: if the target cannot be set up
    """
    try:
        await asyncio.wait_for(semaphore.acquire(), timeout=ctx.remaining())
    except asyncio.TimeoutError as exc:
        raise ProbeTimeoutError("timed out waiting for a free probe connection slot") from exc

    try:
        instance = instance_factory(dsn)
        return await ScrapeOrchestrator().scrape(instance, collectors, sink or MetricSink(), ctx)
    finally:
        semaphore.release()


__all__ = [
    "ScrapeOrchestrator",
    "ScrapeOutcome",
    "ScrapeResult",
    "probe",
    "SCRAPE_DURATION_METRIC",
    "SCRAPE_SUCCESS_METRIC",
]
