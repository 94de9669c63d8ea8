from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pytest

from health_metrics.errors import ProviderError
from health_metrics.models import ProviderConfig, RawExtractionResult
from health_metrics.providers.base import ExtractionProvider


class ScriptedProvider(ExtractionProvider):
    """Provider double that replays a fixed sequence of outcomes.

    Each outcome is either a payload dict (returned as a RawExtractionResult)
    or an exception instance (raised).
    """

    def __init__(self, name: str, outcomes: Sequence[Union[Dict[str, Any], BaseException]] = ()) -> None:
        self.name = name
        self._outcomes: List[Union[Dict[str, Any], BaseException]] = list(outcomes)
        self.calls: List[Dict[str, Any]] = []

    def extract(
        self,
        raw_input: str,
        config: ProviderConfig,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RawExtractionResult:
        self.calls.append({"raw_input": raw_input, "config": config, "hints": dict(hints or {})})
        if not self._outcomes:
            raise AssertionError(f"{self.name} called more times than scripted")
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return RawExtractionResult(provider_name=self.name, model=config.model, payload=outcome)

    @property
    def call_count(self) -> int:
        return len(self.calls)


def provider_entry(**overrides: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "credentials": "test-key",
        "endpoint": "https://api.example.com/v1",
        "model": "test-model",
        "timeout_ms": "30000",
        "max_retries": "2",
        "priority": "1",
        "enabled": True,
        "options": {},
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def make_entry():
    """Factory for raw provider configuration entries."""
    return provider_entry


@pytest.fixture
def timeout_error():
    def _build(provider_name: str) -> ProviderError:
        return ProviderError.transient("Read timed out", provider_name, {"timeout_ms": 30000})

    return _build
