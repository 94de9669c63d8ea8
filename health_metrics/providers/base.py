"""Base interface and shared helpers for extraction providers.

This module defines the abstract base class every provider variant implements
(DeepSeek, Claude, OpenAI) plus the request/response helpers they compose:
input cleaning, prompt building, HTTP error classification and tolerant JSON
parsing of model replies. Retry and fallback are not handled here; a provider
call either returns a ``RawExtractionResult`` or raises ``ProviderError``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Union

import requests

from ..errors import ProviderError
from ..models import ProviderConfig, RawExtractionResult

LOGGER = logging.getLogger(__name__)

MAX_INPUT_CHARS = 10000
MAX_MEDICAL_LINES = 100
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.1

SYSTEM_PROMPT = (
    "You are a medical AI assistant specialized in analyzing medical reports and "
    "extracting health metrics. Always respond with valid JSON format."
)

EXTRACTION_PROMPT = """Analyze this medical report and extract health metrics in JSON format.

CRITICAL INSTRUCTIONS:
1. Find ALL numerical values with medical units (mg/dL, g/dL, %, mmol/L, etc.)
2. Extract ALL test results, even if normal
3. DO NOT return 'N/A' for key_findings - find actual medical data
4. If no medical data is found, return empty array for key_findings

Required JSON structure:
{
  "diagnosis": "[Brief summary]",
  "key_findings": [
    {
      "finding": "[Test name]",
      "value": "[Numeric value]",
      "unit": "[Unit]",
      "reference": "[Normal range]",
      "status": "[normal/borderline/high]"
    }
  ],
  "confidence_score": [0-100 number without %]
}

EXAMPLES of what to extract:
- 'Cholesterol: 180 mg/dL' -> Extract as cholesterol finding
- 'Glucose 95 mg/dL (Normal: 70-99)' -> Extract as glucose finding
- 'HDL 45, LDL 120' -> Extract both as separate findings

Return valid JSON only, no explanations."""

# Statuses that indicate a request the provider will never accept as sent.
PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 422})

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_INVISIBLE_CHARS = re.compile("[\ufffd\u00ad\u200b\u200c\u200d\u2060\ufeff]")
_MEDICAL_VALUE = re.compile(r"\d+\.?\d*\s*(mg/dl|mmol/l|g/dl|%|miu/l|ng/ml|u/l)", re.IGNORECASE)
_MEDICAL_TERM = re.compile(
    r"(cholesterol|glucose|hemoglobin|creatinine|vitamin|thyroid|sodium|potassium)", re.IGNORECASE
)
_MEDICAL_STATUS = re.compile(r"\b(normal|high|low|elevated|decreased|abnormal)\b", re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class ExtractionProvider(ABC):
    """Abstract base class for extraction providers.

    Implementations translate one extraction request into one provider API
    call and the provider's reply into a ``RawExtractionResult``. They hold no
    per-request state, so a single instance serves concurrent requests.
    """

    #: Registry key and the provider name used in errors and logs.
    name: str = ""

    @abstractmethod
    def extract(
        self,
        raw_input: str,
        config: ProviderConfig,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RawExtractionResult:
        """Extract metrics from ``raw_input`` using the provider's API.

        Args:
            raw_input: Document text
            config: Resolved settings for this provider
            hints: Optional request context (expected metrics, report type)

        Returns:
            RawExtractionResult with the provider-specific parsed payload.

        Raises:
            ProviderError: Any failure, classified as retryable or not.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def clean_text_for_processing(text: str) -> str:
    """Normalize document text before it is sent to a model.

    Control and zero-width characters are removed and whitespace is collapsed.
    Inputs longer than ``MAX_INPUT_CHARS`` are reduced to their lab-result
    lines, or truncated when no such lines exist.
    """
    text = _CONTROL_CHARS.sub("", text)
    text = _INVISIBLE_CHARS.sub("", text)

    if len(text) > MAX_INPUT_CHARS:
        medical = extract_medical_section(text)
        if medical:
            LOGGER.debug("Reduced %d characters of input to %d medical lines", len(text), medical.count("\n") + 1)
            return medical[:MAX_INPUT_CHARS]
        return re.sub(r"\s+", " ", text).strip()[:MAX_INPUT_CHARS] + "..."

    return re.sub(r"\s+", " ", text).strip()


def extract_medical_section(text: str) -> str:
    """Return the lines of ``text`` that look like lab results."""
    lines = []
    for line in text.splitlines():
        line = re.sub(r"\s+", " ", line).strip()
        if not line:
            continue
        if _MEDICAL_VALUE.search(line) or _MEDICAL_TERM.search(line) or _MEDICAL_STATUS.search(line):
            lines.append(line)
            if len(lines) >= MAX_MEDICAL_LINES:
                break
    return "\n".join(lines)


def build_extraction_prompt(text: str, hints: Optional[Mapping[str, Any]] = None) -> str:
    """Compose the user prompt shared by every provider."""
    sections = [EXTRACTION_PROMPT]
    hints = hints or {}

    expected = hints.get("expected_metrics")
    if expected:
        sections.append("Pay particular attention to: " + ", ".join(str(name) for name in expected))

    for key in sorted(hints):
        if key == "expected_metrics":
            continue
        value = hints[key]
        if value in (None, "", [], {}):
            continue
        sections.append(f"{key.replace('_', ' ').capitalize()}: {value}")

    sections.append(f"Medical Report Text:\n{text}")
    return "\n\n".join(sections)


def parse_json_content(content: str, provider_name: str) -> Dict[str, Any]:
    """Parse a model reply into a JSON object.

    Handles replies wrapped in code fences, prose around the object and
    trailing commas. An unparseable reply is a retryable ``ProviderError``
    since the model may answer correctly on another attempt.
    """
    if not isinstance(content, str) or not content.strip():
        raise ProviderError.transient("Provider returned empty content", provider_name)

    cleaned = _CODE_FENCE.sub("", content.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ProviderError.transient(
            "Provider reply contains no JSON object",
            provider_name,
            {"content_preview": content[:200]},
        )
    candidate = cleaned[start : end + 1]

    for attempt in (candidate, _TRAILING_COMMA.sub(r"\1", candidate)):
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ProviderError.transient(
        "Provider reply is not valid JSON",
        provider_name,
        {"content_preview": content[:200]},
    )


def raise_for_provider_status(response: requests.Response, provider_name: str) -> None:
    """Raise a classified ``ProviderError`` for a non-2xx response."""
    status = response.status_code
    if 200 <= status < 300:
        return

    detail = _error_detail(response)
    context: Dict[str, Any] = {"status_code": status}
    if detail:
        context["response"] = detail

    if status in (401, 403):
        raise ProviderError.permanent(
            f"Authentication failed (HTTP {status})", provider_name, context, code=status
        )
    if status in PERMANENT_STATUS_CODES:
        raise ProviderError.permanent(
            f"Request rejected by provider (HTTP {status})", provider_name, context, code=status
        )
    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            context["retry_after"] = retry_after
        raise ProviderError.transient("Rate limit exceeded (HTTP 429)", provider_name, context, code=status)
    if status >= 500:
        raise ProviderError.transient(
            f"Provider server error (HTTP {status})", provider_name, context, code=status
        )
    raise ProviderError.transient(f"Unexpected provider response (HTTP {status})", provider_name, context, code=status)


def post_json(
    url: str,
    *,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    config: ProviderConfig,
) -> Dict[str, Any]:
    """POST ``payload`` and return the decoded JSON response body.

    Raises:
        ProviderError: Timeouts and connection failures (retryable), classified
            HTTP errors, and non-JSON bodies (retryable).
    """
    provider_name = config.provider_name
    LOGGER.debug("POST %s (provider=%s model=%s)", url, provider_name, config.model)
    try:
        response = requests.post(url, headers=headers, json=payload, timeout=config.timeout_seconds)
    except requests.exceptions.Timeout as exc:
        raise ProviderError.from_exception(
            exc, provider_name, retryable=True, context={"timeout_ms": config.timeout_ms}
        ) from exc
    except requests.exceptions.ConnectionError as exc:
        raise ProviderError.from_exception(exc, provider_name, retryable=True, context={"url": url}) from exc
    except requests.exceptions.RequestException as exc:
        raise ProviderError.from_exception(exc, provider_name, retryable=True) from exc

    raise_for_provider_status(response, provider_name)

    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError.from_exception(
            exc, provider_name, retryable=True, context={"reason": "response body is not JSON"}
        ) from exc
    if not isinstance(data, dict):
        raise ProviderError.transient("Provider response body is not a JSON object", provider_name)
    return data


@contextmanager
def provider_errors(provider_name: str) -> Iterator[None]:
    """Wrap unexpected exceptions raised inside a provider as ``ProviderError``."""
    try:
        yield
    except ProviderError:
        raise
    except Exception as exc:
        LOGGER.debug("Unexpected %s from provider %s", type(exc).__name__, provider_name)
        raise ProviderError.from_exception(exc, provider_name, retryable=True) from exc


def build_result(
    config: ProviderConfig,
    content: str,
    data: Mapping[str, Any],
    started: float,
) -> RawExtractionResult:
    """Parse ``content`` and package it with usage and timing metadata."""
    payload = parse_json_content(content, config.provider_name)
    usage = data.get("usage")
    return RawExtractionResult(
        provider_name=config.provider_name,
        model=str(data.get("model") or config.model),
        payload=payload,
        raw_text=content,
        usage=dict(usage) if isinstance(usage, Mapping) else {},
        latency_ms=(time.perf_counter() - started) * 1000.0,
    )


def _parse_retry_after(value: Optional[Union[str, int, float]]) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def _error_detail(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return (response.text or "")[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)[:200]
        if error:
            return str(error)[:200]
    return str(data)[:200]
