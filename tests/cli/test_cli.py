"""Tests for the Typer CLI."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from pgspine import __version__
from pgspine.cli.app import app
from pgspine.core.settings import get_settings

runner = CliRunner()


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestVersion:
    def test_command(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"pgspine {__version__}" in result.output

    def test_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestCollectors:
    def test_json(self):
        result = runner.invoke(app, ["collectors", "--json"])
        assert result.exit_code == 0
        assert '"name": "namespaces"' in result.output
        assert '"name": "stat_statements"' in result.output

    def test_unknown_override(self, monkeypatch):
        monkeypatch.setenv("PG_EXPORTER_COLLECTORS_ENABLED", "bogus")
        result = runner.invoke(app, ["collectors"])
        assert result.exit_code == 1


class TestCheckQueries:
    def test_good_file(self, tmp_path):
        path = tmp_path / "queries.yml"
        path.write_text('app_jobs:\n  query: "SELECT 1 AS jobs"\n  metrics:\n    - jobs: {usage: GAUGE}\n')
        result = runner.invoke(app, ["check-queries", str(path), "--no-builtin"])
        assert result.exit_code == 0
        assert "app_jobs" in result.output

    def test_bad_file(self, tmp_path):
        path = tmp_path / "queries.yml"
        path.write_text('app_jobs:\n  metrics:\n    - jobs: {usage: SIDEWAYS}\n')
        result = runner.invoke(app, ["check-queries", str(path)])
        assert result.exit_code == 1

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["check-queries", str(tmp_path / "missing.yml")])
        assert result.exit_code == 1


class TestServe:
    def test_no_data_source(self, monkeypatch):
        for key in ("DATA_SOURCE_NAME", "DATA_SOURCE_URI", "DATA_SOURCE_URI_FILE"):
            monkeypatch.delenv(key, raising=False)
        # keep the global structlog configuration untouched
        monkeypatch.setattr("pgspine.cli.app.configure_logging", lambda **kwargs: None)
        started = []
        monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: started.append(args))
        result = runner.invoke(app, ["serve"])
        assert result.exit_code == 1
        assert started == []
