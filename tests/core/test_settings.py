"""Tests for ExporterSettings and the exporter config file."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from pgspine.core.config import ConfigHandler, load_config
from pgspine.core.errors import ConfigError
from pgspine.core.settings import ExporterSettings, parse_constant_labels, split_csv
from pgspine.observability.metrics import EXPORTER_REGISTRY


# ── Settings ─────────────────────────────────────────────────────────────


class TestExporterSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.chdir(Path(__file__).parent)
        s = ExporterSettings()
        assert s.port == 9187
        assert s.metric_prefix == "pg"
        assert s.max_connections == 5
        assert s.scrape_timeout == 10.0
        assert s.exclude_database_list == []

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("PG_EXPORTER_PORT", "9999")
        monkeypatch.setenv("PG_EXPORTER_EXCLUDE_DATABASES", "template0, rdsadmin ,")
        monkeypatch.setenv("PG_EXPORTER_COLLECTORS_ENABLED", "postmaster")
        s = ExporterSettings()
        assert s.port == 9999
        assert s.exclude_database_list == ["template0", "rdsadmin"]
        assert s.enabled_collector_list == ["postmaster"]

    def test_empty_prefix_rejected(self):
        with pytest.raises(ValidationError):
            ExporterSettings(metric_prefix="  ")

    def test_query_file_paths(self, tmp_path):
        single = tmp_path / "extra.yml"
        single.write_text("")
        qdir = tmp_path / "queries"
        qdir.mkdir()
        for name in ("b.yaml", "a.yml", "notes.txt"):
            (qdir / name).write_text("")
        s = ExporterSettings(extend_query_path=single, custom_query_dir=qdir)
        assert s.query_file_paths() == [single, qdir / "a.yml", qdir / "b.yaml"]


class TestHelpers:
    def test_split_csv(self):
        assert split_csv(" a, b ,,c ") == ["a", "b", "c"]
        assert split_csv("") == []

    def test_constant_labels(self):
        assert parse_constant_labels("env=prod, team = db ,broken,=x,y=") == {"env": "prod", "team": "db"}


# ── Config file ──────────────────────────────────────────────────────────


CONFIG = """
auth_modules:
  prod:
    type: userpass
    userpass:
      username: monitor
      password: s3cret
    options:
      sslmode: require
"""


class TestConfigFile:
    def test_load(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(CONFIG)
        config = load_config(path)
        module = config.auth_modules["prod"]
        dsn = module.configure_target("db1:5432/app")
        assert dsn.username == "monitor"
        assert dsn.password == "s3cret"
        assert dict(dsn.query) == {"sslmode": "require"}

    def test_unknown_keys_rejected(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("auth_modules: {}\nextra: 1\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yml")

    def test_reload_keeps_previous_on_failure(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(CONFIG)
        handler = ConfigHandler()
        handler.reload(path)
        assert EXPORTER_REGISTRY.get_sample_value("postgres_exporter_config_last_reload_successful") == 1.0

        path.write_text("auth_modules: [not, a, mapping]\n")
        with pytest.raises(ConfigError):
            handler.reload(path)
        assert handler.auth_module("prod") is not None
        assert EXPORTER_REGISTRY.get_sample_value("postgres_exporter_config_last_reload_successful") == 0.0
