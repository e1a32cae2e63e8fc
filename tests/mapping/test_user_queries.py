"""Tests for custom query files and the QueryLibrary."""

from __future__ import annotations

import hashlib

import pytest
from structlog.testing import capture_logs

from pgspine.core.errors import QueryFileError
from pgspine.mapping.usage import ColumnUsage
from pgspine.mapping.user_queries import QueryLibrary, QuerySet, parse_user_queries
from pgspine.observability.metrics import EXPORTER_REGISTRY

GOOD = """
pg_postmaster:
  query: "SELECT pg_postmaster_start_time AS start_time_seconds FROM pg_postmaster_start_time()"
  master: true
  cache_seconds: 30
  metrics:
    - start_time_seconds:
        usage: "GAUGE"
        description: "Time at which postmaster started"

app_jobs:
  query: "SELECT queue, state, count(*) AS jobs FROM jobs GROUP BY 1, 2"
  runonserver: ">=10.0.0"
  metrics:
    - queue:
        usage: "LABEL"
    - state:
        usage: "mappedmetric"
        metric_mapping:
          running: 1
          idle: 0
    - jobs:
        usage: "COUNTER"
        pg_version: ">=12.0.0"
"""

BAD = """
broken_one:
  metrics: []
broken_two:
  query: "SELECT 1"
  metrics:
    - col:
        usage: "SIDEWAYS"
"""


def load_error(path, content: bytes | str = "") -> float | None:
    if isinstance(content, str):
        content = content.encode()
    return EXPORTER_REGISTRY.get_sample_value(
        "pg_exporter_user_queries_load_error",
        {"filename": str(path), "hashsum": hashlib.sha256(content).hexdigest() if content else ""},
    )


# ── Parsing ──────────────────────────────────────────────────────────────


class TestParseUserQueries:
    def test_good_file(self):
        query_set = parse_user_queries(GOOD)
        assert list(query_set.definitions) == ["pg_postmaster", "app_jobs"]

        postmaster = query_set.definitions["pg_postmaster"]
        assert postmaster.master
        assert postmaster.cache_seconds == 30
        assert postmaster.column_mappings["start_time_seconds"].usage is ColumnUsage.GAUGE

        jobs = query_set.definitions["app_jobs"]
        assert list(jobs.column_mappings) == ["queue", "state", "jobs"]
        assert jobs.column_mappings["state"].mapping == {"running": 1.0, "idle": 0.0}
        assert jobs.run_on_server is not None
        assert jobs.column_mappings["jobs"].supported_versions is not None

        override = query_set.overrides["app_jobs"]
        assert len(override) == 1
        assert override[0].version_range is None
        assert override[0].query.startswith("SELECT queue")

    def test_empty_file(self):
        assert len(parse_user_queries("")) == 0

    def test_every_issue_reported(self):
        with pytest.raises(QueryFileError) as exc_info:
            parse_user_queries(BAD, path="bad.yml")
        issues = exc_info.value.issues
        assert any(issue.startswith("broken_one") and "query" in issue for issue in issues)
        assert any(issue.startswith("broken_two") for issue in issues)
        assert exc_info.value.context.path == "bad.yml"

    def test_not_a_mapping(self):
        with pytest.raises(QueryFileError):
            parse_user_queries("- just\n- a list\n")

    def test_yaml_syntax_error(self):
        with pytest.raises(QueryFileError):
            parse_user_queries("pg_x: [unclosed\n")

    def test_bad_version_range(self):
        content = 'pg_x:\n  query: "SELECT 1"\n  runonserver: ">=banana"\n'
        with pytest.raises(QueryFileError):
            parse_user_queries(content)

    def test_multi_key_metric_entry(self):
        content = 'pg_x:\n  query: "SELECT 1"\n  metrics:\n    - {a: {usage: GAUGE}, b: {usage: GAUGE}}\n'
        with pytest.raises(QueryFileError):
            parse_user_queries(content)


# ── Merging ──────────────────────────────────────────────────────────────


class TestMerge:
    def test_user_wins_and_logs(self):
        user = parse_user_queries(GOOD)
        with capture_logs() as logs:
            merged = QuerySet.builtin().merge(user, source="queries.yml")
        assert merged.definitions["pg_postmaster"] is user.definitions["pg_postmaster"]
        assert "pg_stat_database" in merged.definitions
        events = {(entry["event"], entry.get("metric")) for entry in logs}
        assert ("Adding new metric from user YAML file", "pg_postmaster") in events
        assert ("Adding new metric from user YAML file", "app_jobs") in events

    def test_override_existing_namespace(self):
        user = parse_user_queries('pg_locks:\n  query: "SELECT 1 AS count"\n  metrics:\n    - count: {usage: GAUGE}\n')
        with capture_logs() as logs:
            merged = QuerySet.builtin().merge(user)
        assert [o.query for o in merged.overrides["pg_locks"]] == ["SELECT 1 AS count"]
        assert any(entry["event"] == "Overriding metric from user YAML file" for entry in logs)
        assert any(entry["event"] == "Overriding query override from user YAML file" for entry in logs)

    def test_merge_does_not_mutate(self):
        base = QuerySet.builtin()
        before = set(base.definitions)
        base.merge(parse_user_queries(GOOD))
        assert set(base.definitions) == before


# ── Library ──────────────────────────────────────────────────────────────


class TestQueryLibrary:
    def test_builtin_only(self):
        library = QueryLibrary()
        assert "pg_stat_database" in library.current.definitions

    def test_without_builtin(self, tmp_path):
        path = tmp_path / "queries.yml"
        path.write_text(GOOD)
        library = QueryLibrary([path], include_builtin=False)
        library.load()
        assert set(library.current.definitions) == {"pg_postmaster", "app_jobs"}
        assert load_error(path, GOOD) == 0.0

    def test_later_file_wins(self, tmp_path):
        first = tmp_path / "a.yml"
        second = tmp_path / "b.yml"
        first.write_text('pg_x:\n  query: "SELECT 1"\n')
        second.write_text('pg_x:\n  query: "SELECT 2"\n')
        library = QueryLibrary([first, second], include_builtin=False)
        library.load()
        assert library.current.overrides["pg_x"][0].query == "SELECT 2"

    def test_load_is_strict(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text(BAD)
        with pytest.raises(QueryFileError):
            QueryLibrary([path]).load()

    def test_missing_file_on_load(self, tmp_path):
        with pytest.raises(QueryFileError):
            QueryLibrary([tmp_path / "missing.yml"]).load()

    def test_reload_keeps_last_good(self, tmp_path):
        path = tmp_path / "queries.yml"
        path.write_text(GOOD)
        library = QueryLibrary([path], include_builtin=False)
        library.load()

        path.write_text(BAD)
        current = library.reload()
        assert "app_jobs" in current.definitions
        assert load_error(path, BAD) == 1.0

        fixed = 'app_jobs:\n  query: "SELECT 3"\n'
        path.write_text(fixed)
        current = library.reload()
        assert current.overrides["app_jobs"][0].query == "SELECT 3"
        assert "pg_postmaster" not in current.definitions
        assert load_error(path, fixed) == 0.0

    def test_reload_unreadable_file(self, tmp_path):
        path = tmp_path / "queries.yml"
        path.write_text(GOOD)
        library = QueryLibrary([path])
        library.load()
        path.unlink()
        current = library.reload()
        assert "pg_postmaster" in current.definitions
        assert load_error(path) == 1.0
