"""Version-aware mapping of SQL result columns onto metrics.

ARCHITECTURE
────────────
::

    builtin.py / user query files
      │  NamespaceDefinition + QueryOverride per namespace
      ▼
    QuerySet.merge()                last writer wins
      │
      ├── make_desc_map(version)            column → MetricMap
      └── make_query_override_map(version)  namespace → SQL ("" = disabled)
      │
      ▼
    query_namespace_mapping()       rows → MetricSample + non-fatal errors
"""

from pgspine.mapping.descriptors import MetricMap, MetricMapNamespace, make_desc_map
from pgspine.mapping.namespace import query_namespace_mapping
from pgspine.mapping.overrides import QueryOverride, make_query_override_map, validate_query_overrides
from pgspine.mapping.usage import ColumnMapping, ColumnUsage, NamespaceDefinition
from pgspine.mapping.user_queries import QueryLibrary, QuerySet, parse_user_queries

__all__ = [
    "ColumnMapping",
    "ColumnUsage",
    "NamespaceDefinition",
    "MetricMap",
    "MetricMapNamespace",
    "make_desc_map",
    "QueryOverride",
    "make_query_override_map",
    "validate_query_overrides",
    "QueryLibrary",
    "QuerySet",
    "parse_user_queries",
    "query_namespace_mapping",
]
