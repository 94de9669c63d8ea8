"""Tests for provider selection, retry, fallback and cancellation."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional

import pytest

from health_metrics.errors import (
    AggregateProviderFailure,
    ConfigurationError,
    ExtractionCancelled,
    MetricMappingError,
    ProviderError,
)
from health_metrics.mapping import StandardMetricMapper
from health_metrics.models import ExtractionRequest
from health_metrics.monitoring import PerformanceCollector
from health_metrics.orchestrator import ExtractionOrchestrator, build_orchestrator, calculate_backoff_delay
from health_metrics.provider_config import ProviderConfigResolver
from health_metrics.provider_registry import ProviderRegistry

from conftest import ScriptedProvider, provider_entry

BP_PAYLOAD = {"bp_sys": "120", "bp_dia": "80"}
DEEPSEEK_BP_PAYLOAD = {"systolic_bp": "120", "diastolic_bp": "80"}


def _build(
    settings: Dict[str, Dict[str, Any]],
    providers: List[ScriptedProvider],
    sleeps: List[float],
    *,
    fallback_enabled: bool = True,
    mapper: Optional[StandardMetricMapper] = None,
    collector: Optional[PerformanceCollector] = None,
    base_delay: float = 0.5,
) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        ProviderConfigResolver(settings, fallback_enabled=fallback_enabled),
        mapper or StandardMetricMapper(),
        ProviderRegistry(providers),
        collector=collector,
        base_delay=base_delay,
        max_delay=10.0,
        sleep=sleeps.append,
    )


def _request(text: str = "Blood pressure 120/80 mmHg") -> ExtractionRequest:
    return ExtractionRequest(text)


class TestRetryAndFallback:
    """Test the retry-then-fallback policy."""

    def test_timeouts_then_fallback_to_claude(self, timeout_error) -> None:
        """DeepSeek times out on both attempts; Claude's bp fields are mapped."""
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek"), timeout_error("deepseek")])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        sleeps: List[float] = []
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1, max_retries=1),
                "claude": provider_entry(priority=2, max_retries=0),
            },
            [deepseek, claude],
            sleeps,
        )

        result = orchestrator.extract_metrics(_request())

        assert deepseek.call_count == 2
        assert claude.call_count == 1
        assert len(sleeps) == 1
        assert 0.5 <= sleeps[0] <= 0.55
        assert result.provider_name == "claude"
        assert result.names() == ["BloodPressureSystolic", "BloodPressureDiastolic"]
        assert result.get("BloodPressureSystolic").value == 120.0
        assert result.get("BloodPressureSystolic").unit == "mmHg"
        assert result.get("BloodPressureDiastolic").value == 80.0
        assert result.get("BloodPressureDiastolic").unit == "mmHg"

    def test_attempts_bounded_by_max_retries(self, timeout_error) -> None:
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek")] * 3)
        sleeps: List[float] = []
        orchestrator = _build({"deepseek": provider_entry(max_retries=2)}, [deepseek], sleeps, base_delay=1.0)

        with pytest.raises(AggregateProviderFailure) as exc_info:
            orchestrator.extract_metrics(_request())

        assert deepseek.call_count == 3
        failure = exc_info.value.failures[0]
        assert failure.attempts == 3
        assert failure.retryable is True
        assert failure.context == {"timeout_ms": 30000}
        assert len(sleeps) == 2
        assert 1.0 <= sleeps[0] <= 1.1
        assert 2.0 <= sleeps[1] <= 2.2

    def test_non_retryable_moves_to_next_provider(self) -> None:
        """A permanent failure skips remaining retries; later providers stay untouched."""
        deepseek = ScriptedProvider("deepseek", [ProviderError.permanent("Authentication failed (HTTP 401)", "deepseek")])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        openai = ScriptedProvider("openai", [])
        sleeps: List[float] = []
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1, max_retries=3),
                "claude": provider_entry(priority=2),
                "openai": provider_entry(priority=3),
            },
            [deepseek, claude, openai],
            sleeps,
        )

        result = orchestrator.extract_metrics(_request())

        assert result.provider_name == "claude"
        assert deepseek.call_count == 1
        assert openai.call_count == 0
        assert sleeps == []

    def test_success_after_retry_stays_on_provider(self, timeout_error) -> None:
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek"), {"systolic_bp": 118}])
        claude = ScriptedProvider("claude", [])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
        )

        result = orchestrator.extract_metrics(_request())

        assert result.provider_name == "deepseek"
        assert result.get("BloodPressureSystolic").value == 118.0
        assert claude.call_count == 0

    def test_retry_after_raises_delay(self) -> None:
        rate_limited = ProviderError.transient("Rate limit exceeded (HTTP 429)", "deepseek", {"retry_after": 3.0})
        deepseek = ScriptedProvider("deepseek", [rate_limited, DEEPSEEK_BP_PAYLOAD])
        sleeps: List[float] = []
        orchestrator = _build({"deepseek": provider_entry()}, [deepseek], sleeps, base_delay=0.1)

        result = orchestrator.extract_metrics(_request())

        assert len(sleeps) == 1
        assert 3.0 <= sleeps[0] <= 3.3
        assert result.names() == ["BloodPressureSystolic", "BloodPressureDiastolic"]

    def test_unexpected_exception_is_retryable(self) -> None:
        deepseek = ScriptedProvider("deepseek", [RuntimeError("boom"), DEEPSEEK_BP_PAYLOAD])
        orchestrator = _build({"deepseek": provider_entry(max_retries=1)}, [deepseek], [])

        result = orchestrator.extract_metrics(_request())

        assert deepseek.call_count == 2
        assert "BloodPressureSystolic" in result

    def test_all_providers_fail(self) -> None:
        deepseek = ScriptedProvider("deepseek", [ProviderError.permanent("HTTP 401", "deepseek", {"status_code": 401})])
        claude = ScriptedProvider("claude", [ProviderError.transient("HTTP 503", "claude", {"status_code": 503})])
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1),
                "claude": provider_entry(priority=2, max_retries=0),
            },
            [deepseek, claude],
            [],
        )

        with pytest.raises(AggregateProviderFailure) as exc_info:
            orchestrator.extract_metrics(_request())

        error = exc_info.value
        assert error.provider_names == ("deepseek", "claude")
        assert error.failures[0].retryable is False
        assert error.failures[0].context == {"status_code": 401}
        assert error.failures[1].retryable is True
        assert error.failures[1].attempts == 1
        assert error.failures[1].message == "HTTP 503"

    def test_fallback_disabled_uses_first_provider_only(self) -> None:
        deepseek = ScriptedProvider("deepseek", [ProviderError.permanent("HTTP 401", "deepseek")])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
            fallback_enabled=False,
        )

        with pytest.raises(AggregateProviderFailure) as exc_info:
            orchestrator.extract_metrics(_request())

        assert exc_info.value.provider_names == ("deepseek",)
        assert claude.call_count == 0

    def test_hints_reach_provider(self) -> None:
        deepseek = ScriptedProvider("deepseek", [DEEPSEEK_BP_PAYLOAD])
        orchestrator = _build({"deepseek": provider_entry()}, [deepseek], [])
        request = ExtractionRequest(
            b"BP 120/80",
            expected_metrics=("BloodPressureSystolic",),
            context={"report_type": "vitals"},
        )

        orchestrator.extract_metrics(request)

        call = deepseek.calls[0]
        assert call["raw_input"] == "BP 120/80"
        assert call["hints"] == {"report_type": "vitals", "expected_metrics": ["BloodPressureSystolic"]}
        assert call["config"].provider_name == "deepseek"


class TestConfigurationFailures:
    """Test that configuration problems abort the request."""

    def test_no_enabled_providers(self) -> None:
        orchestrator = _build({"deepseek": provider_entry(enabled=False)}, [], [])

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.extract_metrics(_request())

        assert exc_info.value.config_key == "providers"

    def test_invalid_config_short_circuits_fallback(self) -> None:
        """A malformed provider entry is fatal even when another provider would work."""
        deepseek = ScriptedProvider("deepseek", [])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1, credentials=""),
                "claude": provider_entry(priority=2),
            },
            [deepseek, claude],
            [],
        )

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.extract_metrics(_request())

        assert exc_info.value.config_key == "providers.deepseek.credentials"
        assert deepseek.call_count == 0
        assert claude.call_count == 0

    def test_invalid_fallback_config_is_fatal(self, timeout_error) -> None:
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek")])
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1, max_retries=0),
                "claude": provider_entry(priority=2, timeout_ms="0"),
            },
            [deepseek, ScriptedProvider("claude", [])],
            [],
        )

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.extract_metrics(_request())

        assert not isinstance(exc_info.value, AggregateProviderFailure)
        assert exc_info.value.config_key == "providers.claude.timeout_ms"

    def test_unregistered_provider(self) -> None:
        orchestrator = _build({"openai": provider_entry()}, [ScriptedProvider("deepseek", [])], [])

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.extract_metrics(_request())

        assert exc_info.value.config_key == "providers.openai"
        assert exc_info.value.context["registered"] == ["deepseek"]

    def test_configuration_error_from_provider_propagates(self) -> None:
        deepseek = ScriptedProvider(
            "deepseek", [ConfigurationError.missing_config("providers.deepseek.options.region")]
        )
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
        )

        with pytest.raises(ConfigurationError):
            orchestrator.extract_metrics(_request())
        assert claude.call_count == 0

    def test_mapping_error_propagates(self) -> None:
        collector = PerformanceCollector()
        deepseek = ScriptedProvider("deepseek", [{"systolic_bp": 120}])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
            mapper=StandardMetricMapper(required_metrics=("HbA1c",)),
            collector=collector,
        )

        with pytest.raises(MetricMappingError):
            orchestrator.extract_metrics(_request())

        assert claude.call_count == 0
        assert collector.get_provider_stats("deepseek")["total_failures"] == 1


class TestCancellation:
    """Test cooperative cancellation through a threading.Event."""

    def test_cancelled_before_start(self) -> None:
        deepseek = ScriptedProvider("deepseek", [DEEPSEEK_BP_PAYLOAD])
        orchestrator = _build({"deepseek": provider_entry()}, [deepseek], [])
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(ExtractionCancelled):
            orchestrator.extract_metrics(_request(), cancel_event=cancel_event)

        assert deepseek.call_count == 0

    def test_cancelled_during_backoff(self, timeout_error) -> None:
        """Setting the event ends the backoff wait and abandons retries and fallback."""
        cancel_event = threading.Event()

        class CancellingProvider(ScriptedProvider):
            def extract(self, raw_input, config, hints=None):
                cancel_event.set()
                return super().extract(raw_input, config, hints)

        deepseek = CancellingProvider("deepseek", [timeout_error("deepseek"), DEEPSEEK_BP_PAYLOAD])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
            base_delay=30.0,
        )

        with pytest.raises(ExtractionCancelled):
            orchestrator.extract_metrics(_request(), cancel_event=cancel_event)

        assert deepseek.call_count == 1
        assert claude.call_count == 0

    def test_result_discarded_when_cancelled_in_flight(self) -> None:
        cancel_event = threading.Event()

        class CancellingProvider(ScriptedProvider):
            def extract(self, raw_input, config, hints=None):
                result = super().extract(raw_input, config, hints)
                cancel_event.set()
                return result

        deepseek = CancellingProvider("deepseek", [DEEPSEEK_BP_PAYLOAD])
        orchestrator = _build({"deepseek": provider_entry()}, [deepseek], [])

        with pytest.raises(ExtractionCancelled):
            orchestrator.extract_metrics(_request(), cancel_event=cancel_event)

    def test_cancel_interrupts_blocked_provider_call(self) -> None:
        """The caller returns promptly even though the provider call is still running."""
        cancel_event = threading.Event()
        release = threading.Event()
        started = threading.Event()

        class BlockingProvider(ScriptedProvider):
            def extract(self, raw_input, config, hints=None):
                started.set()
                release.wait(5.0)
                return super().extract(raw_input, config, hints)

        deepseek = BlockingProvider("deepseek", [DEEPSEEK_BP_PAYLOAD])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "claude": provider_entry(priority=2)},
            [deepseek, claude],
            [],
        )
        timer = threading.Timer(0.1, cancel_event.set)
        timer.start()

        began = time.monotonic()
        try:
            with pytest.raises(ExtractionCancelled):
                orchestrator.extract_metrics(_request(), cancel_event=cancel_event)
            elapsed = time.monotonic() - began
        finally:
            timer.cancel()
            release.set()

        assert started.is_set()
        assert elapsed < 1.0
        assert claude.call_count == 0

    def test_cancel_interrupts_pinned_provider_call(self) -> None:
        cancel_event = threading.Event()
        release = threading.Event()

        class BlockingProvider(ScriptedProvider):
            def extract(self, raw_input, config, hints=None):
                cancel_event.set()
                release.wait(5.0)
                return super().extract(raw_input, config, hints)

        orchestrator = _build({"claude": provider_entry()}, [BlockingProvider("claude", [BP_PAYLOAD])], [])

        began = time.monotonic()
        try:
            with pytest.raises(ExtractionCancelled):
                orchestrator.extract_with_provider(_request(), "claude", cancel_event=cancel_event)
            elapsed = time.monotonic() - began
        finally:
            release.set()

        assert elapsed < 1.0

    def test_unset_event_does_not_interfere(self) -> None:
        deepseek = ScriptedProvider("deepseek", [DEEPSEEK_BP_PAYLOAD])
        orchestrator = _build({"deepseek": provider_entry()}, [deepseek], [])

        result = orchestrator.extract_metrics(_request(), cancel_event=threading.Event())

        assert result.names() == ["BloodPressureSystolic", "BloodPressureDiastolic"]
        assert result.get("BloodPressureDiastolic").value == 80.0


class TestBackoffDelay:
    """Test calculate_backoff_delay()."""

    @pytest.mark.parametrize("attempt,expected", [(1, 1.0), (2, 2.0), (3, 4.0), (4, 8.0), (10, 10.0)])
    def test_exponential_with_cap(self, attempt, expected) -> None:
        delay = calculate_backoff_delay(attempt, base_delay=1.0, max_delay=10.0)
        assert expected <= delay <= expected * 1.1

    def test_linear(self) -> None:
        delay = calculate_backoff_delay(3, base_delay=1.0, max_delay=10.0, use_exponential=False)
        assert 1.0 <= delay <= 1.1

    def test_retry_after(self) -> None:
        assert 5.0 <= calculate_backoff_delay(1, 1.0, 10.0, retry_after=5.0) <= 5.5
        assert 10.0 <= calculate_backoff_delay(1, 1.0, 10.0, retry_after=60.0) <= 11.0

    def test_zero_base_delay(self) -> None:
        assert calculate_backoff_delay(1, 0.0, 10.0) == 0.0


class TestMonitoringIntegration:
    """Test that attempts are recorded in the performance collector."""

    def test_attempts_recorded(self, timeout_error) -> None:
        collector = PerformanceCollector()
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek"), timeout_error("deepseek")])
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1, max_retries=1),
                "claude": provider_entry(priority=2, max_retries=0),
            },
            [deepseek, claude],
            [],
            collector=collector,
        )

        orchestrator.extract_metrics(_request())

        deepseek_stats = collector.get_provider_stats("deepseek")
        assert deepseek_stats["total_attempts"] == 2
        assert deepseek_stats["retryable_failures"] == 2
        assert deepseek_stats["success_rate"] == 0.0
        assert collector.get_provider_stats("claude")["total_successes"] == 1

        last = collector.get_recent_attempts()[-1]
        assert last["provider"] == "claude"
        assert last["model"] == "test-model"
        assert last["metrics_found"] == 2


class TestServiceHealth:
    """Test service_health() reporting."""

    def test_degraded_when_a_provider_is_unusable(self) -> None:
        orchestrator = _build(
            {
                "deepseek": provider_entry(priority=1),
                "claude": provider_entry(priority=2),
                "openai": provider_entry(priority=3, credentials=""),
            },
            [ScriptedProvider("deepseek"), ScriptedProvider("openai")],
            [],
            collector=PerformanceCollector(),
        )

        health = orchestrator.service_health()

        assert health["status"] == "degraded"
        assert health["priority_order"] == ["deepseek", "claude", "openai"]
        assert health["usable_providers"] == ["deepseek"]
        assert set(health["configuration_errors"]) == {"claude", "openai"}
        assert health["registered_providers"] == ["deepseek", "openai"]
        assert health["fallback_enabled"] is True
        assert health["mapping"]["rule_sets"] == ["claude", "deepseek", "openai"]
        assert health["performance"] == {}

    def test_healthy(self) -> None:
        orchestrator = _build({"claude": provider_entry()}, [ScriptedProvider("claude")], [])
        health = orchestrator.service_health()
        assert health["status"] == "healthy"
        assert health["configuration_errors"] == {}

    def test_unhealthy_without_providers(self) -> None:
        assert _build({}, [], []).service_health()["status"] == "unhealthy"

    def test_build_orchestrator_from_environment(self) -> None:
        orchestrator = build_orchestrator({"HEALTH_METRICS_PROVIDERS": "deepseek", "DEEPSEEK_API_KEY": "ds-key"})

        health = orchestrator.service_health()

        assert health["status"] == "healthy"
        assert health["usable_providers"] == ["deepseek"]
        assert health["registered_providers"] == ["claude", "deepseek", "openai"]


class TestExtractWithProvider:
    """Test extraction pinned to a single named provider."""

    def test_uses_requested_provider_even_when_disabled(self) -> None:
        deepseek = ScriptedProvider("deepseek", [])
        openai = ScriptedProvider("openai", [{"blood_pressure_systolic": "121"}])
        orchestrator = _build(
            {"deepseek": provider_entry(priority=1), "openai": provider_entry(priority=3, enabled=False)},
            [deepseek, openai],
            [],
        )

        result = orchestrator.extract_with_provider(_request(), "OpenAI")

        assert result.provider_name == "openai"
        assert result.get("BloodPressureSystolic").value == 121.0
        assert deepseek.call_count == 0

    def test_retries_but_never_falls_back(self, timeout_error) -> None:
        deepseek = ScriptedProvider("deepseek", [timeout_error("deepseek")] * 2)
        claude = ScriptedProvider("claude", [BP_PAYLOAD])
        sleeps: List[float] = []
        orchestrator = _build(
            {"deepseek": provider_entry(priority=2, max_retries=1), "claude": provider_entry(priority=1)},
            [deepseek, claude],
            sleeps,
        )

        with pytest.raises(AggregateProviderFailure) as exc_info:
            orchestrator.extract_with_provider(_request(), "deepseek")

        assert exc_info.value.provider_names == ("deepseek",)
        assert exc_info.value.failures[0].attempts == 2
        assert deepseek.call_count == 2
        assert claude.call_count == 0
        assert len(sleeps) == 1

    def test_unconfigured_provider(self) -> None:
        orchestrator = _build({"deepseek": provider_entry()}, [ScriptedProvider("deepseek", [])], [])

        with pytest.raises(ConfigurationError) as exc_info:
            orchestrator.extract_with_provider(_request(), "claude")

        assert exc_info.value.config_key == "providers.claude"
