"""Provider configuration resolution.

Turns the raw per-provider entries read from the environment into validated
``ProviderConfig`` objects and derives the fallback order. The resolver takes a
snapshot of its source at construction and never mutates it, so one instance
can be shared by concurrent requests.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

from . import config
from .errors import ConfigurationError
from .models import ProviderConfig

LOGGER = logging.getLogger(__name__)


class ProviderConfigResolver:
    """Resolve provider settings and the priority order they imply."""

    def __init__(
        self,
        providers: Mapping[str, Mapping[str, Any]],
        *,
        primary_provider: Optional[str] = None,
        secondary_provider: Optional[str] = None,
        fallback_enabled: bool = True,
    ) -> None:
        """Snapshot the configuration source.

        Args:
            providers: Raw entries keyed by provider name; iteration order is the
                declared provider list order used to break priority ties.
            primary_provider: Provider forced to the front of the order.
            secondary_provider: Provider forced to second position.
            fallback_enabled: When False only the first provider is tried.
        """
        self._entries: Dict[str, Mapping[str, Any]] = {
            str(name).strip().lower(): MappingProxyType(dict(entry or {}))
            for name, entry in providers.items()
        }
        self._declared: Tuple[str, ...] = tuple(self._entries)
        self.primary_provider = (primary_provider or "").strip().lower() or None
        self.secondary_provider = (secondary_provider or "").strip().lower() or None
        self.fallback_enabled = fallback_enabled

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "ProviderConfigResolver":
        """Build a resolver from environment variables (read once)."""
        resolver = cls(config.load_provider_settings(environ), **config.load_selection_settings(environ))
        LOGGER.debug("Loaded provider configuration for %s", ", ".join(resolver.declared_providers) or "<none>")
        return resolver

    @property
    def declared_providers(self) -> Tuple[str, ...]:
        return self._declared

    def resolve(self, provider_name: str) -> ProviderConfig:
        """Return validated settings for ``provider_name``.

        Raises:
            ConfigurationError: ``missing_config`` when no entry exists,
                ``invalid_config`` when a required field is absent or malformed.
        """
        name = provider_name.strip().lower()
        entry = self._entries.get(name)
        if entry is None:
            raise ConfigurationError.missing_config(f"providers.{name}", {"provider": name})

        credentials = _require_text(name, entry, "credentials")
        endpoint = _require_text(name, entry, "endpoint")
        parsed = urlparse(endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError.invalid_config(
                f"providers.{name}.endpoint",
                "must be an absolute http(s) URL",
                {"provider": name, "value": endpoint},
            )
        model = _require_text(name, entry, "model")
        timeout_ms = _require_int(name, entry, "timeout_ms", minimum=1)
        max_retries = _require_int(name, entry, "max_retries", minimum=0)
        priority = _require_int(name, entry, "priority")

        options = entry.get("options") or {}
        if not isinstance(options, Mapping):
            raise ConfigurationError.invalid_config(
                f"providers.{name}.options", "must be a mapping", {"provider": name}
            )

        return ProviderConfig(
            provider_name=name,
            credentials=credentials,
            endpoint=endpoint.rstrip("/"),
            model=model,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            priority=priority,
            options=MappingProxyType(dict(options)),
        )

    def priority_order(self) -> Tuple[str, ...]:
        """Return enabled providers in the order they should be attempted.

        Providers sort by ``(priority, declared index)``; a configured primary
        and secondary provider are then moved to the first two positions.
        Only ``enabled`` and ``priority`` are read here so that a malformed
        entry still takes its place in the order and fails at resolution.
        """
        ranked: List[Tuple[int, int, str]] = []
        for index, name in enumerate(self._declared):
            entry = self._entries[name]
            if not _is_enabled(entry.get("enabled", True)):
                continue
            ranked.append((_require_int(name, entry, "priority"), index, name))
        ranked.sort()

        ordered = [name for _, _, name in ranked]
        for position, preferred in enumerate((self.primary_provider, self.secondary_provider)):
            if preferred and preferred in ordered and ordered.index(preferred) >= position:
                ordered.remove(preferred)
                ordered.insert(position, preferred)
        return tuple(ordered)

    def configuration_summary(self) -> Dict[str, Any]:
        """Return a secret-free overview of the configuration for health checks."""
        details: Dict[str, Dict[str, Any]] = {}
        for name in self._declared:
            entry = self._entries[name]
            details[name] = {
                "enabled": _is_enabled(entry.get("enabled", True)),
                "priority": entry.get("priority"),
                "model": entry.get("model") or "unknown",
                "endpoint": entry.get("endpoint") or None,
                "has_credentials": bool(str(entry.get("credentials") or "").strip()),
                "timeout_ms": entry.get("timeout_ms"),
                "max_retries": entry.get("max_retries"),
            }
        try:
            order: Sequence[str] = self.priority_order()
        except ConfigurationError as exc:
            LOGGER.warning("Priority order unavailable: %s", exc)
            order = ()
        return {
            "primary_provider": self.primary_provider,
            "secondary_provider": self.secondary_provider,
            "fallback_enabled": self.fallback_enabled,
            "priority_order": list(order),
            "provider_count": len(order),
            "providers": details,
        }


def _is_enabled(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in {"0", "false", "no", "off", ""}
    return bool(value)


def _require_text(provider: str, entry: Mapping[str, Any], key: str) -> str:
    value = entry.get(key)
    if value is None or not isinstance(value, str) or not value.strip():
        raise ConfigurationError.invalid_config(
            f"providers.{provider}.{key}",
            f"{key} is required",
            {"provider": provider},
        )
    return value.strip()


def _require_int(provider: str, entry: Mapping[str, Any], key: str, minimum: Optional[int] = None) -> int:
    value = entry.get(key)
    config_key = f"providers.{provider}.{key}"
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ConfigurationError.invalid_config(config_key, f"{key} is required", {"provider": provider})
    # bool is an int subclass but never a meaningful setting here.
    if isinstance(value, bool):
        raise ConfigurationError.invalid_config(
            config_key, f"{key} must be an integer", {"provider": provider, "value": value}
        )
    try:
        number = int(value.strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ConfigurationError.invalid_config(
            config_key, f"{key} must be an integer", {"provider": provider, "value": value}
        ) from None
    if isinstance(value, float) and not value.is_integer():
        raise ConfigurationError.invalid_config(
            config_key, f"{key} must be an integer", {"provider": provider, "value": value}
        )
    if minimum is not None and number < minimum:
        raise ConfigurationError.invalid_config(
            config_key, f"{key} must be >= {minimum}", {"provider": provider, "value": value}
        )
    return number
