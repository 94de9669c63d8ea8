"""Configuration helpers for the health metrics extraction engine."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
load_dotenv()


def _split_names(value: str) -> List[str]:
    """Convert a comma-separated list into clean lowercase names.

    Args:
        value (str): One or many names separated by commas.
    Returns:
        List[str]: Normalized names with whitespace and empty entries removed.
    """
    return [name.strip().lower() for name in value.split(",") if name.strip()]


def _env_flag(value: Optional[str], default: bool) -> bool:
    """Return True/False based on common string representations."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


DEFAULT_PROVIDERS = "deepseek,claude,openai"
DEFAULT_TIMEOUT_MS = "30000"
DEFAULT_MAX_RETRIES = "3"

# Built-in defaults per provider; the API key never has a default.
PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "deepseek": {
        "base_url": "https://api.deepseek.com",
        "model": "deepseek-chat",
        "priority": "1",
    },
    "claude": {
        "base_url": "https://api.anthropic.com/v1",
        "model": "claude-3-5-sonnet-20241022",
        "priority": "2",
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "priority": "3",
    },
}

DEFAULT_ANTHROPIC_VERSION = "2023-06-01"

LOG_LEVEL = os.getenv("HEALTH_METRICS_LOG_LEVEL", "INFO").upper()

PROVIDER_NAMES = _split_names(os.getenv("HEALTH_METRICS_PROVIDERS", DEFAULT_PROVIDERS))
PRIMARY_PROVIDER = os.getenv("PRIMARY_AI_PROVIDER", "").strip().lower()
SECONDARY_PROVIDER = os.getenv("SECONDARY_AI_PROVIDER", "").strip().lower()
FALLBACK_ENABLED = _env_flag(os.getenv("HEALTH_METRICS_FALLBACK_ENABLED"), True)

RETRY_BASE_DELAY_SECONDS = max(0.0, float(os.getenv("HEALTH_METRICS_RETRY_BASE_DELAY_SECONDS", "1.0")))
RETRY_MAX_DELAY_SECONDS = max(0.0, float(os.getenv("HEALTH_METRICS_RETRY_MAX_DELAY_SECONDS", "10.0")))
RETRY_EXPONENTIAL = _env_flag(os.getenv("HEALTH_METRICS_RETRY_EXPONENTIAL"), True)

# Canonical metric names that every successful mapping must contain.
REQUIRED_METRICS = [
    name.strip()
    for name in os.getenv("HEALTH_METRICS_REQUIRED_METRICS", "").split(",")
    if name.strip()
]

PERFORMANCE_HISTORY_SIZE = max(1, int(os.getenv("HEALTH_METRICS_PERFORMANCE_HISTORY", "1000")))


def load_provider_settings(
    environ: Optional[Mapping[str, str]] = None,
    provider_names: Optional[List[str]] = None,
) -> Dict[str, Dict[str, Any]]:
    """Build raw per-provider configuration entries from the environment.

    Each provider ``<name>`` reads ``<NAME>_API_KEY``, ``<NAME>_BASE_URL``,
    ``<NAME>_MODEL``, ``<NAME>_TIMEOUT_MS``, ``<NAME>_MAX_RETRIES``,
    ``<NAME>_PRIORITY`` and ``<NAME>_ENABLED``. Values are returned as raw
    strings; validation happens in :mod:`health_metrics.provider_config`.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``).
        provider_names: Declared provider list (defaults to ``PROVIDER_NAMES``).

    Returns:
        Dict keyed by provider name, preserving the declared order.
    """
    env = os.environ if environ is None else environ
    if provider_names is not None:
        names = provider_names
    elif environ is None:
        names = PROVIDER_NAMES
    else:
        names = _split_names(env.get("HEALTH_METRICS_PROVIDERS", DEFAULT_PROVIDERS))

    settings: Dict[str, Dict[str, Any]] = {}
    for name in names:
        prefix = name.upper()
        defaults = PROVIDER_DEFAULTS.get(name, {})
        entry: Dict[str, Any] = {
            "credentials": env.get(f"{prefix}_API_KEY", ""),
            "endpoint": env.get(f"{prefix}_BASE_URL", defaults.get("base_url", "")),
            "model": env.get(f"{prefix}_MODEL", defaults.get("model", "")),
            "timeout_ms": env.get(f"{prefix}_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            "max_retries": env.get(f"{prefix}_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            "priority": env.get(f"{prefix}_PRIORITY", defaults.get("priority", "99")),
            "enabled": _env_flag(env.get(f"{prefix}_ENABLED"), True),
            "options": {},
        }
        if name == "claude":
            entry["options"] = {
                "anthropic_version": env.get("CLAUDE_ANTHROPIC_VERSION", DEFAULT_ANTHROPIC_VERSION),
            }
        settings[name] = entry
    return settings


def load_selection_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return primary/secondary provider and fallback settings.

    Reads ``environ`` when given, otherwise the values loaded at import.
    """
    if environ is None:
        return {
            "primary_provider": PRIMARY_PROVIDER,
            "secondary_provider": SECONDARY_PROVIDER,
            "fallback_enabled": FALLBACK_ENABLED,
        }
    return {
        "primary_provider": environ.get("PRIMARY_AI_PROVIDER", "").strip().lower(),
        "secondary_provider": environ.get("SECONDARY_AI_PROVIDER", "").strip().lower(),
        "fallback_enabled": _env_flag(environ.get("HEALTH_METRICS_FALLBACK_ENABLED"), True),
    }
