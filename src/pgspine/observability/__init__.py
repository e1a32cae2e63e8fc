"""Metrics about the exporter itself."""
