"""
Exceptions raised by the health metrics extraction engine.

Two families matter to callers:

- ``ConfigurationError``: an operator-fixable defect (missing or malformed
  provider settings, no mapping rules, mandatory metric absent). Never retried
  and never a reason to fall back to another provider.
- ``ProviderError``: a single provider call failed. ``retryable`` tells the
  orchestrator whether another attempt against the same provider makes sense.

When every provider is exhausted the orchestrator raises
``AggregateProviderFailure`` carrying one ``ProviderFailure`` per provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple


class HealthMetricsError(Exception):
    """Base exception for all extraction engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationError(HealthMetricsError):
    """A required configuration entry is absent or malformed."""

    def __init__(
        self,
        message: str,
        *,
        config_key: str = "",
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, {"config_key": config_key, **(context or {})})
        self.config_key = config_key
        self.context = dict(context or {})

    @classmethod
    def missing_config(
        cls,
        config_key: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> "ConfigurationError":
        """Create an error for a configuration entry that does not exist."""
        return cls(f"Missing configuration for: {config_key}", config_key=config_key, context=context)

    @classmethod
    def invalid_config(
        cls,
        config_key: str,
        reason: str = "",
        context: Optional[Dict[str, Any]] = None,
    ) -> "ConfigurationError":
        """Create an error for a configuration entry that cannot be used."""
        message = f"Invalid configuration for: {config_key}"
        if reason:
            message += f" - {reason}"
        merged = dict(context or {})
        if reason:
            merged.setdefault("reason", reason)
        return cls(message, config_key=config_key, context=merged)


class MetricMappingError(ConfigurationError):
    """Provider output does not satisfy the canonical schema's mandatory metrics."""


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(HealthMetricsError):
    """A provider call failed.

    ``retryable`` is fixed at construction: transient conditions (timeouts,
    rate limits, server errors) are retryable, permanent ones (authentication,
    malformed request) are not.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_name: str = "",
        retryable: bool = True,
        context: Optional[Dict[str, Any]] = None,
        code: Optional[Any] = None,
    ) -> None:
        super().__init__(message, {"provider": provider_name, "retryable": retryable, **(context or {})})
        self._retryable = bool(retryable)
        self.provider_name = provider_name
        self.context = dict(context or {})
        self.code = code

    @property
    def retryable(self) -> bool:
        """Whether another attempt against the same provider may succeed."""
        return self._retryable

    @classmethod
    def transient(
        cls,
        message: str,
        provider_name: str = "",
        context: Optional[Dict[str, Any]] = None,
        code: Optional[Any] = None,
    ) -> "ProviderError":
        """Create a retryable provider error."""
        return cls(message, provider_name=provider_name, retryable=True, context=context, code=code)

    @classmethod
    def permanent(
        cls,
        message: str,
        provider_name: str = "",
        context: Optional[Dict[str, Any]] = None,
        code: Optional[Any] = None,
    ) -> "ProviderError":
        """Create a non-retryable provider error."""
        return cls(message, provider_name=provider_name, retryable=False, context=context, code=code)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        provider_name: str = "",
        retryable: bool = True,
        context: Optional[Dict[str, Any]] = None,
    ) -> "ProviderError":
        """Wrap a low-level failure, keeping its message, code and cause."""
        merged = {"original_error": type(exc).__name__, **(context or {})}
        error = cls(
            str(exc) or type(exc).__name__,
            provider_name=provider_name,
            retryable=retryable,
            context=merged,
            code=_extract_error_code(exc),
        )
        error.__cause__ = exc
        return error


def _extract_error_code(exc: BaseException) -> Optional[Any]:
    """Return the most specific error code carried by an exception, if any."""
    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    if status_code is not None:
        return status_code
    for attribute in ("status_code", "errno", "code"):
        value = getattr(exc, attribute, None)
        if value is not None:
            return value
    return None


def _describe_cause(cause: Optional[BaseException]) -> Optional[str]:
    if cause is None:
        return None
    text = str(cause)
    return f"{type(cause).__name__}: {text}" if text else type(cause).__name__


@dataclass(frozen=True)
class ProviderFailure:
    """Terminal failure record for one provider within a request."""

    provider_name: str
    retryable: bool
    message: str
    attempts: int
    context: Dict[str, Any] = field(default_factory=dict)
    code: Optional[Any] = None
    cause: Optional[str] = None

    @classmethod
    def from_error(
        cls,
        error: ProviderError,
        attempts: int,
        provider_name: Optional[str] = None,
    ) -> "ProviderFailure":
        return cls(
            provider_name=provider_name or error.provider_name,
            retryable=error.retryable,
            message=error.message,
            attempts=attempts,
            context=dict(error.context),
            code=error.code,
            cause=_describe_cause(error.__cause__),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "retryable": self.retryable,
            "message": self.message,
            "attempts": self.attempts,
            "context": dict(self.context),
            "code": self.code,
            "cause": self.cause,
        }


class AggregateProviderFailure(HealthMetricsError):
    """Every provider in priority order failed."""

    def __init__(self, failures: Iterable[ProviderFailure]) -> None:
        self.failures: Tuple[ProviderFailure, ...] = tuple(failures)
        names = ", ".join(failure.provider_name for failure in self.failures) or "none"
        super().__init__(
            f"All extraction providers failed ({names})",
            {"failures": [failure.to_dict() for failure in self.failures]},
        )

    @property
    def provider_names(self) -> Tuple[str, ...]:
        return tuple(failure.provider_name for failure in self.failures)


class ExtractionCancelled(HealthMetricsError):
    """The caller cancelled the extraction request."""
