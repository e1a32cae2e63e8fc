"""
pgspine - PostgreSQL metrics exporter.

Subpackages:
- pgspine.core: settings, logging, errors, DSNs, instances, the metric sink
- pgspine.mapping: version-aware column-to-metric mapping engine
- pgspine.collectors: collector contract, registry and built-in collectors
- pgspine.orchestration: scrape fan-out, probe, multi-target exporter, discovery
- pgspine.api: FastAPI HTTP surface
- pgspine.cli: typer command line
"""

__version__ = "0.1.0"
