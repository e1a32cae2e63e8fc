"""Prometheus metrics describing the exporter itself.

These live in their own :class:`CollectorRegistry`, separate from the per
scrape samples produced by collectors, and are rendered ahead of them on
``/metrics``.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge

EXPORTER_REGISTRY = CollectorRegistry(auto_describe=True)

# Scrape health
up_gauge = Gauge(
    "pg_up",
    "Whether the last scrape of metrics from PostgreSQL was able to connect to the server (1 for yes, 0 for no).",
    registry=EXPORTER_REGISTRY,
)

last_scrape_duration_gauge = Gauge(
    "pg_exporter_last_scrape_duration_seconds",
    "Duration of the last scrape of metrics from PostgreSQL.",
    registry=EXPORTER_REGISTRY,
)

scrapes_total_counter = Counter(
    "pg_exporter_scrapes_total",
    "Total number of times PostgreSQL was scraped for metrics.",
    registry=EXPORTER_REGISTRY,
)

last_scrape_error_gauge = Gauge(
    "pg_exporter_last_scrape_error",
    "Whether the last scrape of metrics from PostgreSQL resulted in an error (1 for error, 0 for success).",
    registry=EXPORTER_REGISTRY,
)

# Custom query files
user_queries_load_error_gauge = Gauge(
    "pg_exporter_user_queries_load_error",
    "Whether the user queries file was loaded and parsed successfully (1 for error, 0 for success).",
    ["filename", "hashsum"],
    registry=EXPORTER_REGISTRY,
)

# Exporter config file
config_reload_success_gauge = Gauge(
    "postgres_exporter_config_last_reload_successful",
    "Postgres exporter config loaded successfully.",
    registry=EXPORTER_REGISTRY,
)

config_reload_timestamp_gauge = Gauge(
    "postgres_exporter_config_last_reload_success_timestamp_seconds",
    "Timestamp of the last successful configuration reload.",
    registry=EXPORTER_REGISTRY,
)
