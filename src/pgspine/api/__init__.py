"""HTTP surface: ``/metrics``, ``/probe`` and ``/-/reload``."""

from pgspine.api.app import create_app

__all__ = ["create_app"]
