"""Scrape orchestration: fan-out, discovery, probes and the multi-target exporter."""

from pgspine.orchestration.discovery import discover_database_dsns, dsn_for_database
from pgspine.orchestration.exporter import Exporter
from pgspine.orchestration.scrape import ScrapeOrchestrator, ScrapeOutcome, ScrapeResult, probe

__all__ = [
    "Exporter",
    "ScrapeOrchestrator",
    "ScrapeOutcome",
    "ScrapeResult",
    "probe",
    "discover_database_dsns",
    "dsn_for_database",
]
