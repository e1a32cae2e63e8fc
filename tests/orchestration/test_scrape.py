"""Tests for ScrapeOrchestrator: isolation, concurrency and meta metrics."""

from __future__ import annotations

import asyncio
import time

import pytest

from conftest import FakeConnection, FakeInstance, DSN
from pgspine.collectors.base import ScrapeContext
from pgspine.core.errors import CollectorError, NoDataError, ScrapeSetupError
from pgspine.core.sink import MetricSink, ValueType
from pgspine.orchestration.scrape import SCRAPE_DURATION_METRIC, SCRAPE_SUCCESS_METRIC, ScrapeOrchestrator


class Emitting:
    """Emits one counter after an optional sleep."""

    def __init__(self, name: str, value: float = 1.0, delay: float = 0.0):
        self.name = name
        self.value = value
        self.delay = delay

    async def update(self, ctx, instance, sink):
        if self.delay:
            await asyncio.sleep(self.delay)
        sink.emit(f"pg_test_{self.name}", "test counter", self.value, value_type=ValueType.COUNTER)


class Raising:
    def __init__(self, exc: BaseException):
        self.exc = exc

    async def update(self, ctx, instance, sink):
        raise self.exc


class Querying:
    """Issues one query through the shared connection."""

    async def update(self, ctx, instance, sink):
        await instance.get_db().fetchval("SELECT 1", timeout=ctx.remaining())


def success_of(sink: MetricSink) -> dict[str, float]:
    return {dict(s.labels)["collector"]: s.value for s in sink.samples(SCRAPE_SUCCESS_METRIC)}


def instance(conn: FakeConnection | None = None, **kwargs) -> FakeInstance:
    return FakeInstance(DSN, master=True, connection=conn or FakeConnection(), **kwargs)


# ── Isolation ────────────────────────────────────────────────────────────


class TestIsolation:
    """One collector's failure never affects another's samples."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, scrape_ctx):
        sink = MetricSink()
        result = await ScrapeOrchestrator().scrape(
            instance(),
            {
                "good": Emitting("good", 7),
                "broken": Raising(CollectorError("query failed")),
                "crashing": Raising(ZeroDivisionError("bug")),
                "empty": Raising(NoDataError()),
            },
            sink,
            scrape_ctx,
        )
        assert sink.samples("pg_test_good")[0].value == 7.0
        assert success_of(sink) == {"good": 1.0, "broken": 0.0, "crashing": 0.0, "empty": 0.0}
        assert result.succeeded == 1
        assert result.failed == 2
        assert result.outcome("empty").no_data
        assert result.outcome("crashing").error == "bug"

    @pytest.mark.asyncio
    async def test_meta_metrics_per_collector(self, scrape_ctx):
        sink = MetricSink()
        await ScrapeOrchestrator().scrape(
            instance(), {"a": Emitting("a"), "b": Raising(CollectorError("x"))}, sink, scrape_ctx
        )
        durations = sink.samples(SCRAPE_DURATION_METRIC)
        assert sorted(dict(s.labels)["collector"] for s in durations) == ["a", "b"]
        assert all(s.value >= 0 and s.value_type is ValueType.GAUGE for s in durations)

    @pytest.mark.asyncio
    async def test_deadline(self):
        sink = MetricSink()
        ctx = ScrapeContext.with_timeout(0.05)
        result = await ScrapeOrchestrator().scrape(
            instance(), {"slow": Emitting("slow", delay=1.0), "fast": Emitting("fast")}, sink, ctx
        )
        assert result.outcome("slow").error == "deadline exceeded"
        assert success_of(sink) == {"slow": 0.0, "fast": 1.0}
        assert sink.samples("pg_test_slow") == []


# ── Concurrency ──────────────────────────────────────────────────────────


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_collectors_run_concurrently(self, scrape_ctx):
        collectors = {
            "c100": Emitting("c100", delay=0.10),
            "c50": Emitting("c50", delay=0.05),
            "c10": Emitting("c10", delay=0.01),
        }
        started = time.monotonic()
        await ScrapeOrchestrator().scrape(instance(), collectors, MetricSink(), scrape_ctx)
        assert time.monotonic() - started < 0.16

    @pytest.mark.asyncio
    async def test_queries_are_serialized(self, scrape_ctx):
        conn = FakeConnection({"SELECT 1": 1}, delay=0.01)
        collectors = {f"q{i}": Querying() for i in range(5)}
        sink = MetricSink()
        await ScrapeOrchestrator().scrape(instance(conn), collectors, sink, scrape_ctx)
        assert set(success_of(sink).values()) == {1.0}
        assert conn.max_active == 1


# ── Instance lifecycle ───────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_closed_after_scrape(self, scrape_ctx):
        conn = FakeConnection()
        target = instance(conn)
        await ScrapeOrchestrator().scrape(target, {"a": Emitting("a")}, MetricSink(), scrape_ctx)
        assert conn.closed
        assert not target.is_setup

    @pytest.mark.asyncio
    async def test_persistent_reuses_connection(self, scrape_ctx):
        conn = FakeConnection()
        target = instance(conn)
        orchestrator = ScrapeOrchestrator(persistent=True)
        await orchestrator.scrape(target, {"a": Emitting("a")}, MetricSink(), scrape_ctx)
        await orchestrator.scrape(target, {"a": Emitting("a")}, MetricSink(), scrape_ctx)
        assert target.connects == 1
        assert not conn.closed

    @pytest.mark.asyncio
    async def test_setup_failure(self, scrape_ctx):
        target = instance(connect_error=OSError("connection refused"))
        sink = MetricSink()
        with pytest.raises(ScrapeSetupError):
            await ScrapeOrchestrator().scrape(target, {"a": Emitting("a")}, sink, scrape_ctx)
        assert len(sink) == 0

    @pytest.mark.asyncio
    async def test_version_failure_closes(self, scrape_ctx):
        conn = FakeConnection({"SELECT version();": "garbage", "SHOW server_version;": "garbage"})
        with pytest.raises(ScrapeSetupError):
            await ScrapeOrchestrator().scrape(instance(conn), {"a": Emitting("a")}, MetricSink(), scrape_ctx)
        assert conn.closed
