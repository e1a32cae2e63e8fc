"""Exporter settings.

All knobs are environment-driven with the ``PG_EXPORTER_`` prefix and can
also come from a ``.env`` file. Data source names are *not* settings fields:
they follow the historical ``DATA_SOURCE_*`` precedence implemented in
:mod:`pgspine.core.datasource`.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    - **Pydantic validation:** Type-checked at startup, not at scrape time
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** A bare ``DATA_SOURCE_NAME`` is enough to run

Tags:
    settings, configuration, pydantic, environment, pgspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_constant_labels(value: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` into a label dict.

    Malformed pairs and pairs with an empty key or value are skipped.
    """
    labels: dict[str, str] = {}
    for item in split_csv(value):
        key, sep, val = item.partition("=")
        if not sep or not key.strip() or not val.strip():
            continue
        labels[key.strip()] = val.strip()
    return labels


class ExporterSettings(BaseSettings):
    """Settings for the pgspine exporter.

    Order of precedence (highest → lowest):
        1. Environment variables (``PG_EXPORTER_PORT``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="PG_EXPORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Server ───────────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=9187, description="Bind port")
    telemetry_path: str = Field(default="/metrics", description="Path under which to expose metrics")

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool | None = Field(default=None, description="JSON logs (None = auto-detect from tty)")

    # ── Metrics ──────────────────────────────────────────────────────────
    metric_prefix: str = Field(default="pg", description="Prefix replacing 'pg' in namespace metric names")
    constant_labels: str = Field(default="", description="Comma-separated key=value labels added to every metric")
    disable_default_metrics: bool = Field(default=False, description="Only use metrics from custom query files")
    disable_settings_metrics: bool = Field(default=False, description="Do not export pg_settings metrics")
    extend_query_path: Path | None = Field(default=None, description="YAML file with custom queries")
    custom_query_dir: Path | None = Field(default=None, description="Directory of *.yml/*.yaml custom query files")

    # ── Targets ──────────────────────────────────────────────────────────
    auto_discover_databases: bool = Field(default=False, description="Scrape every database on each server")
    include_databases: str = Field(default="", description="Comma-separated databases to discover (empty = all)")
    exclude_databases: str = Field(default="", description="Comma-separated databases to never scrape")
    persistent_connections: bool = Field(default=False, description="Keep target connections open between scrapes")
    config_file: Path | None = Field(default=None, description="Exporter config file with auth_modules")

    # ── Concurrency ──────────────────────────────────────────────────────
    max_connections: int = Field(default=5, ge=1, description="Max concurrent probe target connections")
    scrape_timeout: float = Field(default=10.0, gt=0, description="Default scrape deadline in seconds")

    # ── Collectors ───────────────────────────────────────────────────────
    collectors_enabled: str = Field(default="", description="Comma-separated collectors to force-enable")
    collectors_disabled: str = Field(default="", description="Comma-separated collectors to force-disable")
    disable_default_collectors: bool = Field(default=False, description="Disable collectors not explicitly enabled")
    stat_statements_include_query: bool = Field(default=False, description="Export the statement text mapping")
    stat_statements_query_length: int = Field(default=120, ge=1, description="Max length of exported statement text")

    @field_validator("metric_prefix")
    @classmethod
    def _prefix_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("metric_prefix must not be empty")
        return value.strip()

    @property
    def include_database_list(self) -> list[str]:
        return split_csv(self.include_databases)

    @property
    def exclude_database_list(self) -> list[str]:
        return split_csv(self.exclude_databases)

    @property
    def enabled_collector_list(self) -> list[str]:
        return split_csv(self.collectors_enabled)

    @property
    def disabled_collector_list(self) -> list[str]:
        return split_csv(self.collectors_disabled)

    @property
    def constant_label_map(self) -> dict[str, str]:
        return parse_constant_labels(self.constant_labels)

    def query_file_paths(self) -> list[Path]:
        """All custom query files, the single file first, then the directory in sorted order."""
        paths: list[Path] = []
        if self.extend_query_path is not None:
            paths.append(self.extend_query_path)
        if self.custom_query_dir is not None and self.custom_query_dir.is_dir():
            found = [p for p in self.custom_query_dir.iterdir() if p.suffix in (".yml", ".yaml") and p.is_file()]
            paths.extend(sorted(found))
        return paths


@lru_cache(maxsize=1)
def get_settings() -> ExporterSettings:
    """Cached settings, loaded once per process."""
    return ExporterSettings()


__all__ = [
    "ExporterSettings",
    "get_settings",
    "split_csv",
    "parse_constant_labels",
]
