"""Tests for turning namespace result rows into samples."""

from __future__ import annotations

import math

import pytest
from packaging.version import Version

from conftest import FakeConnection, FakeInstance, DSN, rows
from pgspine.core.errors import CollectorError, ColumnParseError
from pgspine.core.sink import ValueType
from pgspine.mapping.descriptors import make_namespace_map
from pgspine.mapping.namespace import namespace_query, query_namespace_mapping, rows_to_samples
from pgspine.mapping.usage import ColumnMapping, ColumnUsage, NamespaceDefinition

V14 = Version("14.2.0")


def mapping_for(namespace: str, **columns: ColumnMapping):
    return make_namespace_map(V14, namespace, NamespaceDefinition(column_mappings=dict(columns)))


# ── Query text ───────────────────────────────────────────────────────────


class TestNamespaceQuery:
    def test_default_select(self):
        assert namespace_query("pg_stat_bgwriter", {}) == "SELECT * FROM pg_stat_bgwriter;"

    def test_override(self):
        assert namespace_query("pg_locks", {"pg_locks": "SELECT 1"}) == "SELECT 1"

    def test_disabled_override_is_empty(self):
        assert namespace_query("pg_locks", {"pg_locks": ""}) == ""


# ── Scalar columns ───────────────────────────────────────────────────────


class TestRowsToSamples:
    def test_labels_and_metrics(self):
        mapping = mapping_for(
            "pg_stat_database",
            datname=ColumnMapping(ColumnUsage.LABEL),
            xact_commit=ColumnMapping(ColumnUsage.COUNTER, "Commits"),
            numbackends=ColumnMapping(ColumnUsage.GAUGE, "Backends"),
        )
        samples, errors = rows_to_samples(
            mapping,
            rows(
                {"datname": "app", "xact_commit": 10, "numbackends": 2},
                {"datname": "postgres", "xact_commit": 3, "numbackends": None},
            ),
        )
        assert errors == []
        commits = [s for s in samples if s.name == "pg_stat_database_xact_commit"]
        assert [(s.labels, s.value, s.value_type) for s in commits] == [
            ((("datname", "app"),), 10.0, ValueType.COUNTER),
            ((("datname", "postgres"),), 3.0, ValueType.COUNTER),
        ]
        backends = [s for s in samples if s.name == "pg_stat_database_numbackends"]
        assert math.isnan(backends[1].value)

    def test_unknown_column_becomes_untyped(self):
        mapping = mapping_for("pg_x", a=ColumnMapping(ColumnUsage.GAUGE))
        samples, errors = rows_to_samples(mapping, rows({"a": 1, "surprise": "2.5", "text": "hello"}))
        untyped = [s for s in samples if s.name == "pg_x_surprise"]
        assert untyped[0].value_type is ValueType.UNTYPED
        assert untyped[0].documentation == "Unknown metric from pg_x"
        assert untyped[0].value == 2.5
        assert len(errors) == 1
        assert "Unparseable column type - discarding" in errors[0].message
        assert not any(s.name == "pg_x_text" for s in samples)

    def test_conversion_failure_is_non_fatal(self):
        mapping = mapping_for(
            "pg_x",
            state=ColumnMapping(ColumnUsage.MAPPEDMETRIC, mapping={"on": 1.0}),
            other=ColumnMapping(ColumnUsage.GAUGE),
        )
        samples, errors = rows_to_samples(mapping, rows({"state": "weird", "other": 4}))
        assert [s.name for s in samples] == ["pg_x_other"]
        assert isinstance(errors[0], ColumnParseError)

    def test_discarded_columns_emit_nothing(self):
        mapping = mapping_for("pg_x", junk=ColumnMapping(ColumnUsage.DISCARD), a=ColumnMapping(ColumnUsage.GAUGE))
        samples, _ = rows_to_samples(mapping, rows({"junk": "zzz", "a": 1}))
        assert [s.name for s in samples] == ["pg_x_a"]


# ── Histograms ───────────────────────────────────────────────────────────


class TestHistogramRows:
    """Histograms are rebuilt from the bounds column and its three siblings."""

    def mapping(self):
        return mapping_for(
            "pg_lat",
            query=ColumnMapping(ColumnUsage.LABEL),
            lat=ColumnMapping(ColumnUsage.HISTOGRAM, "Latency"),
            other=ColumnMapping(ColumnUsage.GAUGE),
        )

    def test_complete_histogram(self):
        samples, errors = rows_to_samples(
            self.mapping(),
            rows({"query": "q1", "lat": [1.0, 5.0], "lat_bucket": [3, 7], "lat_sum": 12.5, "lat_count": 9, "other": 1}),
        )
        assert errors == []
        histogram = [s for s in samples if s.name == "pg_lat_lat"][0]
        assert histogram.value_type is ValueType.HISTOGRAM
        assert histogram.labels == (("query", "q1"),)
        assert histogram.histogram.buckets == ((1.0, 3), (5.0, 7))
        assert histogram.histogram.sum == 12.5
        assert histogram.histogram.count == 9
        # siblings are not exported on their own
        assert {s.name for s in samples} == {"pg_lat_lat", "pg_lat_other"}

    def test_mismatched_lengths_truncate(self):
        samples, errors = rows_to_samples(
            self.mapping(),
            rows({"query": "q", "lat": [1.0, 5.0, 10.0], "lat_bucket": [3, 7], "lat_sum": 1, "lat_count": 7, "other": 1}),
        )
        assert errors == []
        histogram = [s for s in samples if s.name == "pg_lat_lat"][0]
        assert len(histogram.histogram.buckets) == 2

    @pytest.mark.parametrize("missing", ["lat_bucket", "lat_sum", "lat_count"])
    def test_missing_sibling_skips_only_that_column(self, missing):
        row = {"query": "q", "lat": [1.0], "lat_bucket": [3], "lat_sum": 1.0, "lat_count": 3, "other": 4}
        del row[missing]
        samples, errors = rows_to_samples(self.mapping(), rows(row))
        assert len(errors) == 1
        assert missing in errors[0].message
        assert [s.name for s in samples] == ["pg_lat_other"]

    def test_bad_bounds_type(self):
        samples, errors = rows_to_samples(
            self.mapping(),
            rows({"query": "q", "lat": "not-an-array", "lat_bucket": [1], "lat_sum": 1, "lat_count": 1, "other": 1}),
        )
        assert len(errors) == 1
        assert [s.name for s in samples] == ["pg_lat_other"]


# ── Querying ─────────────────────────────────────────────────────────────


class TestQueryNamespaceMapping:
    @pytest.mark.asyncio
    async def test_runs_override_query(self):
        conn = FakeConnection({"SELECT count": rows({"count": 4})})
        instance = FakeInstance(DSN, connection=conn)
        await instance.setup()
        mapping = mapping_for("pg_locks", count=ColumnMapping(ColumnUsage.GAUGE))
        samples, errors = await query_namespace_mapping(instance.get_db(), mapping, {"pg_locks": "SELECT count(*) AS count"})
        assert [s.value for s in samples] == [4.0]
        assert "SELECT count(*) AS count" in conn.queries

    @pytest.mark.asyncio
    async def test_disabled_namespace_does_not_query(self):
        conn = FakeConnection()
        instance = FakeInstance(DSN, connection=conn)
        await instance.setup()
        mapping = mapping_for("pg_locks", count=ColumnMapping(ColumnUsage.GAUGE))
        assert await query_namespace_mapping(instance.get_db(), mapping, {"pg_locks": ""}) == ([], [])
        assert conn.queries == ["SELECT version();"]

    @pytest.mark.asyncio
    async def test_query_failure(self):
        conn = FakeConnection({"FROM pg_locks": OSError("gone")})
        instance = FakeInstance(DSN, connection=conn)
        await instance.setup()
        mapping = mapping_for("pg_locks", count=ColumnMapping(ColumnUsage.GAUGE))
        with pytest.raises(CollectorError) as exc_info:
            await query_namespace_mapping(instance.get_db(), mapping, {})
        assert exc_info.value.context.namespace == "pg_locks"
