"""Health metrics extraction engine.

Extracts structured health metrics from unstructured report text through a
prioritized chain of AI extraction providers and normalizes the result into a
canonical metric schema.
"""

from .errors import (
    AggregateProviderFailure,
    ConfigurationError,
    ExtractionCancelled,
    HealthMetricsError,
    MetricMappingError,
    ProviderError,
    ProviderFailure,
)
from .mapping import StandardMetricMapper
from .models import ExtractionRequest, Metric, MetricSet, ProviderConfig, RawExtractionResult
from .orchestrator import ExtractionOrchestrator, ExtractionState, build_orchestrator
from .provider_config import ProviderConfigResolver
from .provider_registry import ProviderRegistry, build_default_registry

__all__ = [
    "AggregateProviderFailure",
    "ConfigurationError",
    "ExtractionCancelled",
    "ExtractionOrchestrator",
    "ExtractionRequest",
    "ExtractionState",
    "HealthMetricsError",
    "Metric",
    "MetricMappingError",
    "MetricSet",
    "ProviderConfig",
    "ProviderConfigResolver",
    "ProviderError",
    "ProviderFailure",
    "ProviderRegistry",
    "RawExtractionResult",
    "StandardMetricMapper",
    "build_default_registry",
    "build_orchestrator",
]
