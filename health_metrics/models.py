"""Data structures shared by the extraction engine.

Provider-facing value objects are dataclasses; the canonical output
(``Metric``/``MetricSet``) is a pydantic model so callers can serialize it
directly into API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved, validated settings for one extraction provider.

    Attributes:
        provider_name: Provider identifier ("deepseek" | "claude" | "openai")
        credentials: API key sent to the provider (never logged or repr'd)
        endpoint: API base URL without trailing slash
        model: Model identifier requested from the provider
        timeout_ms: Per-call timeout in milliseconds
        max_retries: Additional attempts after the first one (>= 0)
        priority: Sort key for the fallback chain, lower is tried first
        options: Provider-specific extras (e.g. anthropic_version)
    """

    provider_name: str
    credentials: str = field(repr=False)
    endpoint: str
    model: str
    timeout_ms: int
    max_retries: int
    priority: int
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), compare=False)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries


@dataclass(frozen=True)
class ExtractionRequest:
    """One call to the orchestrator.

    Attributes:
        raw_input: Document text (bytes are decoded as UTF-8)
        expected_metrics: Optional canonical metric names the caller cares about
        context: Optional hints forwarded to providers (report type, etc.)
    """

    raw_input: Union[str, bytes]
    expected_metrics: Tuple[str, ...] = ()
    context: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.raw_input, bytes):
            object.__setattr__(self, "raw_input", self.raw_input.decode("utf-8", errors="replace"))
        if not isinstance(self.raw_input, str) or not self.raw_input.strip():
            raise ValueError("Extraction input cannot be empty")
        object.__setattr__(self, "expected_metrics", tuple(self.expected_metrics))

    @property
    def text(self) -> str:
        return str(self.raw_input)

    @property
    def hints(self) -> Dict[str, Any]:
        """Hints passed to providers alongside the input text."""
        hints: Dict[str, Any] = dict(self.context)
        if self.expected_metrics:
            hints["expected_metrics"] = list(self.expected_metrics)
        return hints


@dataclass
class RawExtractionResult:
    """Provider-specific output before canonical mapping.

    Attributes:
        provider_name: Provider that produced the output
        model: Model that produced the output
        payload: Parsed JSON object returned by the model
        raw_text: Unparsed model reply, kept for diagnostics
        usage: Token usage reported by the provider, if any
        latency_ms: Wall time of the provider call
    """

    provider_name: str
    model: str
    payload: Dict[str, Any]
    raw_text: str = ""
    usage: Dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0.0


class Metric(BaseModel):
    """A single canonical health metric."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical metric name, e.g. BloodPressureSystolic")
    value: float = Field(..., description="Numeric value expressed in the canonical unit")
    unit: str = Field(..., description="Canonical unit for the metric")
    confidence: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, description="Mapping confidence between 0 and 1"
    )
    category: Optional[str] = Field(default=None, description="Catalog category (blood, organs, ...)")
    status: Optional[str] = Field(
        default=None, description="normal | borderline | high when a reference range exists"
    )


class MetricSet(BaseModel):
    """Canonical metrics keyed by unique metric name, in extraction order."""

    metrics: Dict[str, Metric] = Field(default_factory=dict)
    provider_name: Optional[str] = Field(default=None, description="Provider that produced the metrics")
    model: Optional[str] = Field(default=None, description="Model that produced the metrics")
    confidence: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, description="Overall confidence reported by the provider"
    )

    def names(self) -> List[str]:
        return list(self.metrics)

    def get(self, name: str) -> Optional[Metric]:
        return self.metrics.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self.metrics

    def __len__(self) -> int:
        return len(self.metrics)

    def values(self) -> List[Metric]:
        return list(self.metrics.values())
