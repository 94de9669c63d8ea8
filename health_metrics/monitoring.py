"""Provider performance tracking for the extraction engine.

This module provides:
- Per-attempt records of every provider call (success, latency, error)
- Per-provider aggregates (success rate, average latency, retryable failures)
- A process-wide collector used by the orchestrator and service health checks
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from . import config

LOGGER = logging.getLogger(__name__)


@dataclass
class ProviderAttemptLog:
    """Log entry for a single provider attempt."""

    timestamp: str
    provider: str
    model: str
    success: bool
    latency_ms: float
    attempt: int = 1
    error: Optional[str] = None
    retryable: Optional[bool] = None
    metrics_found: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class ProviderStats:
    """Aggregated statistics for one provider."""

    total_attempts: int = 0
    total_successes: int = 0
    total_failures: int = 0
    retryable_failures: int = 0
    total_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.total_successes / self.total_attempts if self.total_attempts > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.total_attempts if self.total_attempts > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "retryable_failures": self.retryable_failures,
            "success_rate": self.success_rate,
            "avg_latency_ms": self.avg_latency_ms,
        }


class PerformanceCollector:
    """Collects provider attempt outcomes.

    Thread-safe: concurrent requests record into the same collector. Recent
    attempts are kept in a bounded buffer; aggregates cover the process
    lifetime until ``reset_stats`` is called.
    """

    def __init__(self, history_size: Optional[int] = None) -> None:
        size = history_size or config.PERFORMANCE_HISTORY_SIZE
        self._lock = Lock()
        self._provider_stats: Dict[str, ProviderStats] = defaultdict(ProviderStats)
        self._recent_attempts: Deque[ProviderAttemptLog] = deque(maxlen=size)
        self._recent_failures: Deque[ProviderAttemptLog] = deque(maxlen=max(1, size // 5))

    def record_attempt(
        self,
        provider: str,
        model: str,
        success: bool,
        latency_ms: float,
        attempt: int = 1,
        error: Optional[str] = None,
        retryable: Optional[bool] = None,
        metrics_found: Optional[int] = None,
    ) -> None:
        """Record one provider attempt.

        Args:
            provider: Provider name
            model: Model requested from the provider
            success: Whether the call returned a usable result
            latency_ms: Wall time of the call in milliseconds
            attempt: 1-based attempt number against this provider
            error: Error message when the call failed
            retryable: Whether the failure was classified as retryable
            metrics_found: Canonical metrics mapped from a successful call
        """
        entry = ProviderAttemptLog(
            timestamp=datetime.now(timezone.utc).isoformat(),
            provider=provider,
            model=model,
            success=success,
            latency_ms=latency_ms,
            attempt=attempt,
            error=error,
            retryable=retryable,
            metrics_found=metrics_found,
        )
        with self._lock:
            stats = self._provider_stats[provider]
            stats.total_attempts += 1
            stats.total_latency_ms += latency_ms
            if success:
                stats.total_successes += 1
            else:
                stats.total_failures += 1
                if retryable:
                    stats.retryable_failures += 1
                self._recent_failures.append(entry)
            self._recent_attempts.append(entry)

    def get_provider_stats(self, provider: str) -> Dict[str, Any]:
        """Get statistics for a specific provider."""
        with self._lock:
            stats = self._provider_stats.get(provider)
            return (stats or ProviderStats()).to_dict()

    def get_all_provider_stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {provider: stats.to_dict() for provider, stats in self._provider_stats.items()}

    def get_overall_stats(self) -> Dict[str, Any]:
        """Get overall statistics across all providers."""
        with self._lock:
            attempts = sum(s.total_attempts for s in self._provider_stats.values())
            successes = sum(s.total_successes for s in self._provider_stats.values())
            latency = sum(s.total_latency_ms for s in self._provider_stats.values())
            return {
                "total_attempts": attempts,
                "total_successes": successes,
                "total_failures": attempts - successes,
                "success_rate": successes / attempts if attempts > 0 else 0.0,
                "avg_latency_ms": latency / attempts if attempts > 0 else 0.0,
            }

    def get_recent_failures(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get the most recent failed attempts, oldest first."""
        with self._lock:
            return [log.to_dict() for log in list(self._recent_failures)[-limit:]]

    def get_recent_attempts(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._lock:
            return [log.to_dict() for log in list(self._recent_attempts)[-limit:]]

    def reset_stats(self) -> None:
        """Reset all statistics (for testing)."""
        with self._lock:
            self._provider_stats.clear()
            self._recent_attempts.clear()
            self._recent_failures.clear()
        LOGGER.info("PerformanceCollector statistics reset")


# Global singleton instance
_performance_collector: Optional[PerformanceCollector] = None
_collector_lock = Lock()


def get_performance_collector() -> PerformanceCollector:
    """Get or create the global performance collector instance."""
    global _performance_collector
    if _performance_collector is None:
        with _collector_lock:
            if _performance_collector is None:
                _performance_collector = PerformanceCollector()
    return _performance_collector
