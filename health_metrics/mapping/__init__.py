"""Canonical metric schema and the mapper that targets it."""

from .catalog import METRIC_CATALOG, MetricDefinition, normalize_unit
from .rules import DEFAULT_MAPPING_RULES, ProviderMappingRules
from .standard import StandardMetricMapper

__all__ = [
    "DEFAULT_MAPPING_RULES",
    "METRIC_CATALOG",
    "MetricDefinition",
    "ProviderMappingRules",
    "StandardMetricMapper",
    "normalize_unit",
]
