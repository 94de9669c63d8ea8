"""Extraction orchestrator.

Single entry point of the engine: walks the configured providers in priority
order, retries transient failures with exponential backoff, falls back to the
next provider on permanent failure or exhausted retries, and maps the first
successful result into a canonical ``MetricSet``.

Error policy:
- ``ConfigurationError`` (including ``MetricMappingError``) aborts the request
  immediately; it is never retried and never triggers fallback.
- ``ProviderError`` with ``retryable=True`` is retried on the same provider
  while attempts remain, then the next provider is tried.
- ``ProviderError`` with ``retryable=False`` moves straight to the next provider.
- When every provider fails, ``AggregateProviderFailure`` lists each of them.
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from . import config
from .errors import (
    AggregateProviderFailure,
    ConfigurationError,
    ExtractionCancelled,
    ProviderError,
    ProviderFailure,
)
from .mapping import StandardMetricMapper
from .models import ExtractionRequest, MetricSet, ProviderConfig, RawExtractionResult
from .monitoring import PerformanceCollector, get_performance_collector
from .provider_config import ProviderConfigResolver
from .provider_registry import ProviderRegistry, get_provider_registry
from .providers import ExtractionProvider

LOGGER = logging.getLogger(__name__)

# How often a caller blocked on an in-flight provider call checks for cancellation.
CANCEL_POLL_SECONDS = 0.05


class ExtractionState(str, Enum):
    """Lifecycle of one extraction request."""

    PENDING = "pending"
    SELECTING_PROVIDER = "selecting_provider"
    INVOKING = "invoking"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    MAPPING = "mapping"
    DONE = "done"
    FAILED = "failed"


def calculate_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    use_exponential: bool = True,
    retry_after: Optional[float] = None,
) -> float:
    """Calculate the wait before retry number ``attempt`` (1-based).

    Args:
        attempt: Number of the attempt that just failed
        base_delay: Base delay in seconds
        max_delay: Upper bound before jitter
        use_exponential: Double the delay on every attempt when True
        retry_after: Provider-requested minimum delay, if any

    Returns:
        Delay in seconds: ``min(max(exponential, retry_after), max_delay)`` plus
        up to 10% jitter so concurrent retries do not align.
    """
    if use_exponential:
        delay = base_delay * (2 ** max(0, attempt - 1))
    else:
        delay = base_delay
    if retry_after is not None and retry_after > delay:
        delay = retry_after
    delay = min(delay, max_delay)

    jitter = random.uniform(0, delay * 0.1)
    return delay + jitter


class ExtractionOrchestrator:
    """Coordinates provider selection, retry, fallback and mapping.

    All collaborators are passed in explicitly; the orchestrator holds no
    per-request state, so one instance serves concurrent callers.
    """

    def __init__(
        self,
        resolver: ProviderConfigResolver,
        mapper: StandardMetricMapper,
        registry: ProviderRegistry,
        *,
        collector: Optional[PerformanceCollector] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        use_exponential: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._resolver = resolver
        self._mapper = mapper
        self._registry = registry
        self._collector = collector
        self._base_delay = config.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
        self._max_delay = config.RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self._use_exponential = config.RETRY_EXPONENTIAL if use_exponential is None else use_exponential
        self._sleep = sleep

    def extract_metrics(
        self,
        request: ExtractionRequest,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> MetricSet:
        """Extract canonical metrics for ``request``.

        Args:
            request: Input document and optional hints
            cancel_event: Set by the caller to abandon the request. The caller
                stops waiting on an in-flight provider call and on backoff at
                once; no further attempts are made.

        Returns:
            MetricSet from the first provider that succeeds.

        Raises:
            ConfigurationError: No enabled providers, or a provider's settings,
                registration or mapping rules are unusable.
            AggregateProviderFailure: Every provider failed.
            ExtractionCancelled: ``cancel_event`` was set.
        """
        request_id = uuid.uuid4().hex[:8]
        self._transition(request_id, ExtractionState.PENDING)
        self._check_cancelled(request_id, cancel_event)

        order = self._resolver.priority_order()
        if not order:
            raise ConfigurationError.missing_config("providers", {"reason": "no enabled extraction providers"})
        if not self._resolver.fallback_enabled:
            order = order[:1]

        failures: List[ProviderFailure] = []
        for position, provider_name in enumerate(order):
            self._check_cancelled(request_id, cancel_event)
            self._transition(request_id, ExtractionState.SELECTING_PROVIDER, provider_name)

            provider_config = self._resolver.resolve(provider_name)
            provider = self._registry.get_provider(provider_name)
            if position > 0:
                LOGGER.warning(
                    "[%s] Falling back to provider %s after %s failed",
                    request_id,
                    provider_name,
                    failures[-1].provider_name,
                )
            else:
                LOGGER.info("[%s] Extracting with provider %s (model=%s)", request_id, provider_name, provider_config.model)

            metric_set, failure = self._invoke_with_retry(request_id, provider, provider_config, request, cancel_event)
            if metric_set is not None:
                return metric_set
            failures.append(failure)

        self._transition(request_id, ExtractionState.FAILED)
        LOGGER.error(
            "[%s] All extraction providers failed: %s",
            request_id,
            "; ".join(f"{f.provider_name} ({f.attempts} attempts): {f.message}" for f in failures),
        )
        raise AggregateProviderFailure(failures)

    def extract_with_provider(
        self,
        request: ExtractionRequest,
        provider_name: str,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> MetricSet:
        """Extract with one named provider, bypassing priority order and fallback.

        The provider only needs a valid configuration entry; it does not have
        to be enabled. Retries still apply.

        Raises:
            ConfigurationError: The provider is not configured or not registered.
            AggregateProviderFailure: The provider failed (single entry).
            ExtractionCancelled: ``cancel_event`` was set.
        """
        request_id = uuid.uuid4().hex[:8]
        self._transition(request_id, ExtractionState.PENDING)
        self._check_cancelled(request_id, cancel_event)
        self._transition(request_id, ExtractionState.SELECTING_PROVIDER, provider_name)

        provider_config = self._resolver.resolve(provider_name)
        provider = self._registry.get_provider(provider_config.provider_name)
        LOGGER.info(
            "[%s] Extracting with requested provider %s (model=%s)",
            request_id,
            provider_config.provider_name,
            provider_config.model,
        )

        metric_set, failure = self._invoke_with_retry(request_id, provider, provider_config, request, cancel_event)
        if metric_set is not None:
            return metric_set

        self._transition(request_id, ExtractionState.FAILED)
        LOGGER.error("[%s] Provider %s failed: %s", request_id, failure.provider_name, failure.message)
        raise AggregateProviderFailure([failure])

    def service_health(self) -> Dict[str, Any]:
        """Report configuration, mapping and provider performance status."""
        configuration = self._resolver.configuration_summary()
        order = configuration["priority_order"]
        usable: List[str] = []
        problems: Dict[str, str] = {}
        for provider_name in order:
            try:
                self._resolver.resolve(provider_name)
                self._registry.get_provider(provider_name)
            except ConfigurationError as exc:
                problems[provider_name] = exc.message
            else:
                usable.append(provider_name)

        if order and len(usable) == len(order):
            status = "healthy"
        elif usable:
            status = "degraded"
        else:
            status = "unhealthy"

        return {
            "status": status,
            "priority_order": list(order),
            "usable_providers": usable,
            "configuration_errors": problems,
            "registered_providers": self._registry.names(),
            "fallback_enabled": self._resolver.fallback_enabled,
            "configuration": configuration,
            "mapping": self._mapper.mapping_statistics(),
            "performance": self._collector.get_all_provider_stats() if self._collector else {},
        }

    def _invoke_with_retry(
        self,
        request_id: str,
        provider: ExtractionProvider,
        provider_config: ProviderConfig,
        request: ExtractionRequest,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[Optional[MetricSet], Optional[ProviderFailure]]:
        provider_name = provider_config.provider_name
        max_attempts = provider_config.max_attempts

        for attempt in range(1, max_attempts + 1):
            self._check_cancelled(request_id, cancel_event)
            self._transition(request_id, ExtractionState.INVOKING, provider_name, attempt)

            started = time.perf_counter()
            try:
                raw = self._call_provider(request_id, provider, provider_config, request, cancel_event)
            except (ConfigurationError, ExtractionCancelled):
                raise
            except ProviderError as exc:
                error = exc
            except Exception as exc:  # pylint: disable=broad-except
                error = ProviderError.from_exception(exc, provider_name, retryable=True)
            else:
                latency_ms = (time.perf_counter() - started) * 1000.0
                # A call that completed after cancellation is discarded.
                self._check_cancelled(request_id, cancel_event)
                self._transition(request_id, ExtractionState.MAPPING, provider_name, attempt)
                try:
                    metric_set = self._mapper.map(provider_name, raw)
                except ConfigurationError as exc:
                    self._record(provider_config, False, latency_ms, attempt, exc.message, False)
                    raise
                self._record(provider_config, True, latency_ms, attempt, metrics_found=len(metric_set))
                self._transition(request_id, ExtractionState.DONE, provider_name, attempt)
                LOGGER.info(
                    "[%s] Extracted %d metrics with %s in %.0f ms (attempt %d/%d)",
                    request_id,
                    len(metric_set),
                    provider_name,
                    latency_ms,
                    attempt,
                    max_attempts,
                )
                return metric_set, None

            latency_ms = (time.perf_counter() - started) * 1000.0
            self._record(provider_config, False, latency_ms, attempt, error.message, error.retryable)
            failure = ProviderFailure.from_error(error, attempt, provider_name)

            if not error.retryable:
                LOGGER.warning(
                    "[%s] Provider %s failed with non-retryable error: %s",
                    request_id,
                    provider_name,
                    error,
                )
                self._transition(request_id, ExtractionState.EXHAUSTED, provider_name, attempt)
                return None, failure

            if attempt >= max_attempts:
                LOGGER.warning(
                    "[%s] Provider %s exhausted %d attempts: %s",
                    request_id,
                    provider_name,
                    max_attempts,
                    error,
                )
                self._transition(request_id, ExtractionState.EXHAUSTED, provider_name, attempt)
                return None, failure

            delay = calculate_backoff_delay(
                attempt,
                self._base_delay,
                self._max_delay,
                self._use_exponential,
                retry_after=_retry_after(error.context),
            )
            self._transition(request_id, ExtractionState.RETRY, provider_name, attempt)
            LOGGER.warning(
                "[%s] Retrying provider %s in %.2fs (attempt %d/%d failed): %s",
                request_id,
                provider_name,
                delay,
                attempt,
                max_attempts,
                error.message,
            )
            if self._wait(delay, cancel_event):
                self._check_cancelled(request_id, cancel_event)

        # max_attempts is at least 1, so the loop always returns.
        return None, None

    def _call_provider(
        self,
        request_id: str,
        provider: ExtractionProvider,
        provider_config: ProviderConfig,
        request: ExtractionRequest,
        cancel_event: Optional[threading.Event],
    ) -> RawExtractionResult:
        """Run one provider call, returning early if ``cancel_event`` is set.

        With a cancel event the call runs on a worker thread so the caller can
        stop waiting for it. An abandoned call finishes in the background,
        bounded by the provider timeout, and its outcome is ignored.
        """
        if cancel_event is None:
            return provider.extract(request.text, provider_config, request.hints)

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"extract-{provider_config.provider_name}")
        try:
            future = pool.submit(provider.extract, request.text, provider_config, request.hints)
            while True:
                done, _ = wait([future], timeout=CANCEL_POLL_SECONDS)
                if done:
                    return future.result()
                if cancel_event.is_set():
                    LOGGER.info(
                        "[%s] Abandoning in-flight call to %s",
                        request_id,
                        provider_config.provider_name,
                    )
                    self._check_cancelled(request_id, cancel_event)
        finally:
            pool.shutdown(wait=False)

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> bool:
        """Block for ``delay`` seconds; return True if cancelled meanwhile."""
        if cancel_event is not None:
            return cancel_event.wait(delay)
        self._sleep(delay)
        return False

    def _record(
        self,
        provider_config: ProviderConfig,
        success: bool,
        latency_ms: float,
        attempt: int,
        error: Optional[str] = None,
        retryable: Optional[bool] = None,
        metrics_found: Optional[int] = None,
    ) -> None:
        if self._collector is None:
            return
        self._collector.record_attempt(
            provider=provider_config.provider_name,
            model=provider_config.model,
            success=success,
            latency_ms=latency_ms,
            attempt=attempt,
            error=error,
            retryable=retryable,
            metrics_found=metrics_found,
        )

    @staticmethod
    def _check_cancelled(request_id: str, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.info("[%s] Extraction cancelled by caller", request_id)
            raise ExtractionCancelled("Extraction request was cancelled", {"request_id": request_id})

    @staticmethod
    def _transition(
        request_id: str,
        state: ExtractionState,
        provider_name: Optional[str] = None,
        attempt: Optional[int] = None,
    ) -> None:
        LOGGER.debug("[%s] state=%s provider=%s attempt=%s", request_id, state.value, provider_name, attempt)


def _retry_after(context: Mapping[str, Any]) -> Optional[float]:
    value = context.get("retry_after")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def build_orchestrator(environ: Optional[Mapping[str, str]] = None) -> ExtractionOrchestrator:
    """Wire an orchestrator from environment configuration and the default providers."""
    return ExtractionOrchestrator(
        resolver=ProviderConfigResolver.from_environment(environ),
        mapper=StandardMetricMapper(required_metrics=config.REQUIRED_METRICS),
        registry=get_provider_registry(),
        collector=get_performance_collector(),
    )
